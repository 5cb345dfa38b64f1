"""
Order aggregate.

Financial figures are fixed at checkout. Afterwards only payment state,
lifecycle status and cumulative refund totals change.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import OrderStateException
from domain.common.money import ZERO, round_money
from domain.pricing.entity import PriceValidationResult, TaxLine


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class PaymentMode(str, Enum):
    card = "card"
    cash = "cash"
    upi = "upi"
    netbanking = "netbanking"
    wallet = "wallet"


@dataclass
class OrderLine:
    """Line item with the price snapshot taken at checkout."""

    product_id: str
    name: str
    qty: int
    price_configuration: dict[str, str] = field(default_factory=dict)
    toppings: list[dict] = field(default_factory=list)
    unit_price: Decimal = ZERO
    total_price: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "qty": self.qty,
            "price_configuration": dict(self.price_configuration),
            "toppings": [dict(t) for t in self.toppings],
            "unit_price": str(self.unit_price),
            "total_price": str(self.total_price),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OrderLine":
        return cls(
            product_id=data["product_id"],
            name=data.get("name", ""),
            qty=int(data["qty"]),
            price_configuration=dict(data.get("price_configuration") or {}),
            toppings=list(data.get("toppings") or []),
            unit_price=Decimal(str(data.get("unit_price", "0"))),
            total_price=Decimal(str(data.get("total_price", "0"))),
        )


@dataclass
class RefundDetails:
    total_refunded: Decimal = ZERO
    wallet_refunded: Decimal = ZERO
    gateway_refunded: Decimal = ZERO
    reserved: Decimal = ZERO
    last_refunded_at: Optional[datetime] = None


@dataclass
class Order:
    id: str
    tenant_id: str
    customer_id: str
    items: list[OrderLine]
    sub_total: Decimal
    discount: Decimal
    delivery_charge: Decimal
    taxes: list[TaxLine]
    tax_total: Decimal
    total: Decimal
    wallet_credits_applied: Decimal = ZERO
    final_total: Decimal = ZERO
    payment_mode: PaymentMode = PaymentMode.card
    payment_status: PaymentStatus = PaymentStatus.pending
    status: OrderStatus = OrderStatus.pending
    coupon_code: Optional[str] = None
    address: Optional[str] = None
    comment: Optional[str] = None
    delivery_info: Optional[dict] = None
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    refund_details: RefundDetails = field(default_factory=RefundDetails)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def place(
        cls,
        *,
        tenant_id: str,
        customer_id: str,
        items: list[OrderLine],
        pricing: PriceValidationResult,
        wallet_credits_applied: Decimal,
        payment_mode: PaymentMode,
        coupon_code: Optional[str] = None,
        address: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> "Order":
        """Build a new order from a validated price breakdown."""
        credits = round_money(wallet_credits_applied or ZERO)
        if credits < 0:
            raise OrderStateException("Wallet credits cannot be negative")
        total = pricing.final_total
        final_total = max(ZERO, round_money(total - credits))

        payment_status = PaymentStatus.pending
        if final_total == 0 and credits > 0:
            payment_mode = PaymentMode.wallet
            payment_status = PaymentStatus.paid

        delivery_info = None
        if pricing.delivery_info is not None:
            info = pricing.delivery_info
            delivery_info = {
                "delivery_charge": str(info.delivery_charge),
                "is_free_delivery": info.is_free_delivery,
                "free_delivery_reason": info.free_delivery_reason,
                "applied_tier": (
                    {
                        "min_order_value": str(info.applied_tier.min_order_value),
                        "delivery_charge": str(info.applied_tier.delivery_charge),
                    }
                    if info.applied_tier
                    else None
                ),
            }

        now = datetime.now(timezone.utc)
        return cls(
            id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            customer_id=customer_id,
            items=items,
            sub_total=pricing.sub_total,
            discount=pricing.discount,
            delivery_charge=pricing.delivery_charge,
            taxes=list(pricing.taxes),
            tax_total=pricing.tax_total,
            total=total,
            wallet_credits_applied=credits,
            final_total=final_total,
            payment_mode=payment_mode,
            payment_status=payment_status,
            coupon_code=coupon_code,
            address=address,
            comment=comment,
            delivery_info=delivery_info,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_full_wallet_payment(self) -> bool:
        return self.final_total == 0 and self.wallet_credits_applied > 0

    @property
    def uses_wallet(self) -> bool:
        return self.wallet_credits_applied > 0

    @property
    def refundable_amount(self) -> Decimal:
        """尚可退款金额，扣除已退与处理中的预留额度"""
        details = self.refund_details
        return max(ZERO, round_money(self.total - details.total_refunded - details.reserved))

    @property
    def wallet_refundable(self) -> Decimal:
        return max(ZERO, round_money(self.wallet_credits_applied - self.refund_details.wallet_refunded))

    @property
    def gateway_refundable(self) -> Decimal:
        return max(ZERO, round_money(self.final_total - self.refund_details.gateway_refunded))

    def mark_paid(self, payment_id: Optional[str] = None) -> None:
        self.payment_status = PaymentStatus.paid
        if payment_id:
            self.payment_id = payment_id
        self.updated_at = datetime.now(timezone.utc)

    def mark_failed(self) -> None:
        self.payment_status = PaymentStatus.failed
        self.updated_at = datetime.now(timezone.utc)

    def change_status(self, status: OrderStatus) -> None:
        self.status = status
        self.updated_at = datetime.now(timezone.utc)
