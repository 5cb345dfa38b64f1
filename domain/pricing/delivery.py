"""Delivery charge resolution from a tenant's tier table."""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from domain.common.money import ZERO, round_money, to_decimal
from domain.pricing.entity import DeliveryChargeResult, DeliveryConfiguration


def resolve_delivery_charge(
    config: Optional[DeliveryConfiguration],
    amount: Decimal,
) -> Optional[DeliveryChargeResult]:
    """Return the delivery charge for a post-discount order amount.

    Without a configuration there is nothing to resolve and None is returned;
    callers treat that as a zero charge.
    """
    if config is None:
        return None

    amount = to_decimal(amount)

    if not config.is_active:
        return DeliveryChargeResult(ZERO, True, "disabled")

    threshold = config.free_delivery_threshold
    if threshold and amount >= threshold:
        return DeliveryChargeResult(ZERO, True, "threshold")

    tiers = config.order_value_tiers
    if not tiers:
        return DeliveryChargeResult(ZERO, True, "tier")

    ordered = sorted(tiers, key=lambda t: t.min_order_value, reverse=True)
    applied = next((t for t in ordered if amount >= t.min_order_value), None)
    if applied is None:
        # Below every floor: tier tables that don't start at 0 fall back to the lowest one
        applied = ordered[-1]

    charge = round_money(applied.delivery_charge)
    if charge == 0:
        return DeliveryChargeResult(ZERO, True, "tier", applied)
    return DeliveryChargeResult(charge, False, None, applied)
