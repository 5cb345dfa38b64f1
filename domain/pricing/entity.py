"""
Pricing snapshot types and validation results.

Catalog and tenant configuration objects are read-only snapshots supplied by
external stores; the pricing engine never mutates them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from domain.common.money import ZERO


@dataclass(frozen=True)
class PriceConfiguration:
    """One configuration axis of a product (e.g. "Size"), option name -> price.

    Options keep their insertion order.
    """

    price_type: str
    available_options: dict[str, Decimal]


@dataclass(frozen=True)
class Product:
    id: str
    tenant_id: str
    name: str
    is_published: bool
    price_configuration: dict[str, PriceConfiguration] = field(default_factory=dict)


@dataclass(frozen=True)
class Topping:
    id: str
    tenant_id: str
    name: str
    price: Decimal
    is_published: bool


@dataclass(frozen=True)
class OrderValueTier:
    min_order_value: Decimal
    delivery_charge: Decimal


@dataclass(frozen=True)
class DeliveryConfiguration:
    tenant_id: str
    is_active: bool
    order_value_tiers: list[OrderValueTier] = field(default_factory=list)
    free_delivery_threshold: Optional[Decimal] = None


@dataclass(frozen=True)
class TaxComponent:
    name: str
    rate: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class TaxConfiguration:
    tenant_id: str
    taxes: list[TaxComponent] = field(default_factory=list)


@dataclass(frozen=True)
class Coupon:
    code: str
    tenant_id: str
    discount: Decimal
    valid_upto: datetime
    title: str = ""

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        valid_upto = self.valid_upto
        if valid_upto.tzinfo is None:
            valid_upto = valid_upto.replace(tzinfo=timezone.utc)
        return now > valid_upto


# ---------------------------------------------------------------------------
# Submitted order items
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SelectedTopping:
    id: str
    name: str
    price: Decimal


@dataclass(frozen=True)
class OrderItem:
    product_id: str
    name: str
    qty: int
    price_configuration: dict[str, str] = field(default_factory=dict)
    toppings: list[SelectedTopping] = field(default_factory=list)
    # Client-submitted line total, informational only
    total_price: Optional[Decimal] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeliveryChargeResult:
    delivery_charge: Decimal
    is_free_delivery: bool
    free_delivery_reason: Optional[str] = None  # disabled | threshold | tier
    applied_tier: Optional[OrderValueTier] = None


@dataclass(frozen=True)
class TaxLine:
    name: str
    rate: Decimal
    amount: Decimal


@dataclass
class ItemPriceDetail:
    product_id: str
    name: str
    qty: int
    unit_price: Decimal = ZERO
    total_price: Decimal = ZERO
    error: Optional[str] = None


@dataclass
class PriceValidationResult:
    is_valid: bool
    sub_total: Decimal
    discount: Decimal
    delivery_charge: Decimal
    taxes: list[TaxLine]
    tax_total: Decimal
    final_total: Decimal
    delivery_info: Optional[DeliveryChargeResult] = None
    errors: list[str] = field(default_factory=list)
    item_details: list[ItemPriceDetail] = field(default_factory=list)

    def summary(self) -> dict:
        """Server-computed figures, returned to the client on mismatch."""
        return {
            "sub_total": str(self.sub_total),
            "discount": str(self.discount),
            "delivery_charge": str(self.delivery_charge),
            "tax_total": str(self.tax_total),
            "total": str(self.final_total),
            "items": [
                {
                    "product_id": d.product_id,
                    "unit_price": str(d.unit_price),
                    "total_price": str(d.total_price),
                    "error": d.error,
                }
                for d in self.item_details
            ],
        }
