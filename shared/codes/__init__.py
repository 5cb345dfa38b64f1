"""
业务码（Domain/Core/API 共用）

- BusinessCode: 通用码（参数、鉴权、系统）
- BillingCode:  计价、订单、钱包、退款（7xxxx，见 billing_codes）
- PaymentCode:  支付网关（6xxxx，见 payment_codes）

响应体 ``code`` 字段取这里的值，HTTP 状态码由 core.exceptions 统一映射。
"""
from enum import IntEnum

from .billing_codes import BillingCode
from .payment_codes import PaymentCode


class BusinessCode(IntEnum):
    SUCCESS = 0

    # 请求参数（1xxxx）
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # 资源状态（2xxxx）
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006
    CONFLICT = 20007

    # 鉴权（3xxxx）：调用方 Token 由上游签发，这里只校验
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # 系统（4xxxx）
    SYSTEM_ERROR = 40000
    SERVICE_UNAVAILABLE = 40003

    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode", "BillingCode", "PaymentCode"]
