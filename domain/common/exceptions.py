"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import BusinessCode
from shared.codes.billing_codes import BillingCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class ForbiddenException(BusinessException):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="Forbidden",
        )


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class PriceValidationException(BusinessException):
    """服务端重算价格与客户端提交不一致，携带全部错误"""

    def __init__(self, errors: list[str], computed: Optional[dict] = None):
        details: dict = {"errors": list(errors)}
        if computed:
            details["computed"] = computed
        super().__init__(
            code=BillingCode.PRICE_MISMATCH,
            message="Price validation failed",
            error_type="PriceValidationError",
            details=details,
        )
        self.errors = list(errors)


class TenantRequiredException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BillingCode.TENANT_REQUIRED,
            message="tenantId is required",
            error_type="TenantRequired",
            field="tenant_id",
        )


class CouponNotFoundException(BusinessException):
    def __init__(self, code: str):
        super().__init__(
            code=BillingCode.COUPON_NOT_FOUND,
            message="Coupon not found",
            error_type="CouponNotFound",
            details={"coupon_code": code},
            field="coupon_code",
        )


class CouponExpiredException(BusinessException):
    def __init__(self, code: str):
        super().__init__(
            code=BillingCode.COUPON_EXPIRED,
            message="Coupon has expired",
            error_type="CouponExpired",
            details={"coupon_code": code},
            field="coupon_code",
        )


# ---------------------------------------------------------------------------
# Orders / idempotency
# ---------------------------------------------------------------------------


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[str] = None):
        details = {"order_id": order_id} if order_id else None
        super().__init__(
            code=BillingCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details,
        )


class OrderStateException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BillingCode.ORDER_STATE_INVALID,
            message=message,
            error_type="OrderStateInvalid",
            details=details,
        )


class IdempotencyKeyMissingException(BusinessException):
    def __init__(self, header: str):
        super().__init__(
            code=BillingCode.IDEMPOTENCY_KEY_MISSING,
            message=f"Idempotency key is required in the {header} header",
            error_type="IdempotencyKeyMissing",
            field=header,
        )


class IdempotencyConflictException(BusinessException):
    """同一幂等键的并发请求，后到者在唯一索引上失败"""

    def __init__(self, key: str):
        super().__init__(
            code=BillingCode.IDEMPOTENCY_CONFLICT,
            message="A request with this idempotency key is already being processed",
            error_type="IdempotencyConflict",
            details={"key": key},
        )


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


class WalletNotFoundException(BusinessException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            code=BillingCode.WALLET_NOT_FOUND,
            message="Wallet not found",
            error_type="WalletNotFound",
            details=details,
        )


class WalletAlreadyExistsException(BusinessException):
    def __init__(self, user_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="Wallet already exists",
            error_type="WalletAlreadyExists",
            details={"user_id": user_id},
        )


class InsufficientWalletBalanceException(BusinessException):
    def __init__(self, available: Decimal, required: Decimal):
        super().__init__(
            code=BillingCode.INSUFFICIENT_BALANCE,
            message=f"Insufficient wallet balance. Available: {available}, Required: {required}",
            error_type="InsufficientBalance",
            details={"available": str(available), "required": str(required)},
        )


class WalletUpdateFailedException(BusinessException):
    """条件更新未命中：余额已被并发扣减，或钱包被冻结/不存在"""

    def __init__(self, message: str = "Insufficient balance or wallet frozen", *, user_id: Optional[str] = None):
        super().__init__(
            code=BillingCode.WALLET_UPDATE_FAILED,
            message=message,
            error_type="WalletUpdateFailed",
            details={"user_id": user_id} if user_id else None,
        )


class DuplicateWalletTransactionException(BusinessException):
    def __init__(self, idempotency_key: str):
        super().__init__(
            code=BillingCode.WALLET_TRANSACTION_CONFLICT,
            message="Wallet transaction already recorded",
            error_type="DuplicateWalletTransaction",
            details={"idempotency_key": idempotency_key},
        )
        self.idempotency_key = idempotency_key


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


class RefundNotAllowedException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BillingCode.REFUND_NOT_ALLOWED,
            message=message,
            error_type="RefundNotAllowed",
            details=details,
        )


class RefundExceedsRefundableException(BusinessException):
    def __init__(self, requested: Decimal, refundable: Decimal):
        super().__init__(
            code=BillingCode.REFUND_EXCEEDS_REFUNDABLE,
            message=f"Refund amount exceeds refundable amount. Maximum refundable: {refundable}",
            error_type="RefundExceedsRefundable",
            details={"requested": str(requested), "refundable": str(refundable)},
            field="amount",
        )
