from decimal import Decimal

from domain.pricing.delivery import resolve_delivery_charge
from domain.pricing.entity import DeliveryConfiguration, OrderValueTier


def _config(tiers, *, active=True, threshold=None):
    return DeliveryConfiguration(
        tenant_id="t1",
        is_active=active,
        order_value_tiers=[OrderValueTier(Decimal(m), Decimal(c)) for m, c in tiers],
        free_delivery_threshold=Decimal(threshold) if threshold is not None else None,
    )


def test_no_configuration_resolves_to_nothing():
    assert resolve_delivery_charge(None, Decimal("100")) is None


def test_inactive_configuration_is_free():
    result = resolve_delivery_charge(_config([("0", "40")], active=False), Decimal("100"))
    assert result.delivery_charge == Decimal("0")
    assert result.is_free_delivery
    assert result.free_delivery_reason == "disabled"


def test_threshold_reached_is_free():
    config = _config([("0", "40")], threshold="500")

    at = resolve_delivery_charge(config, Decimal("500"))
    below = resolve_delivery_charge(config, Decimal("499.99"))

    assert at.free_delivery_reason == "threshold"
    assert at.delivery_charge == 0
    assert below.delivery_charge == Decimal("40.00")


def test_highest_matching_tier_wins_regardless_of_order():
    config = _config([("300", "20"), ("0", "40"), ("600", "10")])

    assert resolve_delivery_charge(config, Decimal("450")).delivery_charge == Decimal("20.00")
    assert resolve_delivery_charge(config, Decimal("100")).delivery_charge == Decimal("40.00")
    assert resolve_delivery_charge(config, Decimal("600")).delivery_charge == Decimal("10.00")


def test_amount_below_every_tier_uses_lowest_tier():
    config = _config([("200", "30"), ("500", "15")])

    result = resolve_delivery_charge(config, Decimal("50"))

    assert result.delivery_charge == Decimal("30.00")
    assert result.applied_tier.min_order_value == Decimal("200")
    assert not result.is_free_delivery


def test_zero_charge_tier_is_free_delivery():
    config = _config([("0", "40"), ("300", "0")])

    result = resolve_delivery_charge(config, Decimal("300"))

    assert result.is_free_delivery
    assert result.free_delivery_reason == "tier"
    assert result.applied_tier.min_order_value == Decimal("300")


def test_empty_tier_table_is_free():
    result = resolve_delivery_charge(_config([]), Decimal("100"))
    assert result.is_free_delivery
    assert result.delivery_charge == 0
