"""
Payment DTOs (Pydantic v2) used at application boundaries.

Gateway-facing DTOs always carry integer minor units; request/response DTOs
for the HTTP surface carry Decimal amounts.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

# Common ISO-4217 currencies (extend as needed)
ISO_4217 = {
    "INR", "USD", "EUR", "GBP", "AED", "SGD", "AUD", "CAD",
}


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


# ---------------------------------------------------------------------------
# Gateway port DTOs
# ---------------------------------------------------------------------------


class CreateGatewayOrder(BaseModel):
    order_id: str
    amount_minor: int = Field(gt=0)
    currency: str = Field(default="INR")
    idempotency_key: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: str) -> str:
        return _validate_currency(v)


class GatewayOrder(BaseModel):
    gateway_order_id: str
    status: str
    provider: str
    amount_minor: int
    currency: str
    payment_url: Optional[str] = None


class GatewayRefundRequest(BaseModel):
    payment_id: str
    amount_minor: Optional[int] = Field(default=None, gt=0)  # None = full refund
    idempotency_key: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[dict[str, str]] = None


class GatewayRefund(BaseModel):
    id: str
    amount_minor: int
    status: str
    provider: str
    payment_id: Optional[str] = None


class PaymentDetails(BaseModel):
    payment_id: str
    status: str
    provider: str
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    order_id: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


# ---------------------------------------------------------------------------
# HTTP request/response DTOs
# ---------------------------------------------------------------------------


class InitiatePaymentRequest(BaseModel):
    order_id: str
    currency: str = Field(default="INR")

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: str) -> str:
        return _validate_currency(v)


class InitiatePaymentResponse(BaseModel):
    order_id: str
    gateway_order_id: str
    provider: str
    amount: Decimal
    amount_minor: int
    currency: str
    status: str
    payment_url: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: Optional[str] = None
    gateway_order_id: Optional[str] = None


class RefundPaymentRequest(BaseModel):
    order_id: str
    amount: Optional[condecimal(gt=0, max_digits=12, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = None


class RefundOutcome(BaseModel):
    order_id: str
    refund_amount: Decimal
    wallet_refund: Decimal
    gateway_refund: Decimal
    gateway_refund_status: str  # not_required | succeeded | failed | skipped
    gateway_refund_id: Optional[str] = None
    payment_status: str
    total_refunded: Decimal
    remaining_refundable: Decimal
    fully_refunded: bool
