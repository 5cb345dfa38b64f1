"""
支付网关异常，统一映射为 BusinessException（code 取 PaymentCode）

- PaymentRecoverableError 及其子类：网关暂不可用，调用方可稍后重试
- PaymentProviderError：网关明确拒绝（参数错误、退款被拒等）
- PaymentSignatureError：回调或结账签名校验失败
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentGatewayError(BusinessException):
    code = PaymentCode.PROVIDER_ERROR
    error_type = "PaymentGatewayError"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code, **(details or {})}
        self.provider = provider
        super().__init__(
            code=type(self).code,
            message=message,
            error_type=type(self).error_type,
            details=full_details,
        )


class PaymentProviderError(PaymentGatewayError):
    code = PaymentCode.PROVIDER_ERROR
    error_type = "PaymentProviderError"


class PaymentRecoverableError(PaymentGatewayError):
    code = PaymentCode.PROVIDER_RECOVERABLE
    error_type = "PaymentRecoverableError"


class PaymentTimeoutError(PaymentRecoverableError):
    code = PaymentCode.TIMEOUT
    error_type = "PaymentTimeout"


class PaymentRateLimitedError(PaymentRecoverableError):
    code = PaymentCode.RATE_LIMITED
    error_type = "PaymentRateLimited"


class PaymentSignatureError(PaymentGatewayError):
    code = PaymentCode.SIGNATURE_ERROR
    error_type = "PaymentSignatureError"

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=details)
        self.details.pop("provider_code", None)


class UnsupportedProviderError(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.UNSUPPORTED_PROVIDER,
            message=f"Unsupported payment provider: {provider}",
            error_type="UnsupportedProvider",
            details={"provider": provider},
        )
