"""
Server-authoritative order price recomputation.

The calculator recomputes every figure of an order from the catalog snapshot
and tenant configuration, then compares it with what the client submitted.
It never fails fast: item problems and mismatches are all collected so a
client can fix its cart in a single round trip.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from domain.common.money import ZERO, round_money, to_decimal, within_tolerance
from domain.pricing.delivery import resolve_delivery_charge
from domain.pricing.entity import (
    Coupon,
    ItemPriceDetail,
    OrderItem,
    PriceValidationResult,
    TaxLine,
)
from domain.pricing.repository import CatalogRepository, TenantConfigRepository


class PriceCalculator:
    def __init__(self, catalog: CatalogRepository, tenant_config: TenantConfigRepository):
        self.catalog = catalog
        self.tenant_config = tenant_config

    async def calculate_item_price(self, item: OrderItem, tenant_id: str) -> ItemPriceDetail:
        """Price one line item; ``error`` is set instead of raising."""
        detail = ItemPriceDetail(product_id=item.product_id, name=item.name, qty=item.qty)

        if item.qty < 1:
            detail.error = f"Invalid quantity {item.qty} for {item.name}"
            return detail

        product = await self.catalog.get_product(item.product_id)
        if product is None:
            detail.error = f"Product not found: {item.product_id}"
            return detail
        if product.tenant_id != tenant_id:
            detail.error = f"Product {product.name} does not belong to this tenant"
            return detail
        if not product.is_published:
            detail.error = f"Product {product.name} is not published"
            return detail

        unit_price = ZERO
        for key, option in item.price_configuration.items():
            config = product.price_configuration.get(key)
            if config is None:
                detail.error = f"Invalid configuration '{key}' for product {product.name}"
                return detail
            if option not in config.available_options:
                detail.error = f"Invalid option '{option}' for {key} on product {product.name}"
                return detail
            unit_price += to_decimal(config.available_options[option])

        for selected in item.toppings:
            topping = await self.catalog.get_topping(selected.id)
            if topping is None:
                detail.error = f"Topping not found: {selected.id}"
                return detail
            if topping.tenant_id != tenant_id:
                detail.error = f"Topping {topping.name} does not belong to this tenant"
                return detail
            if not topping.is_published:
                detail.error = f"Topping {topping.name} is not available"
                return detail
            # no tolerance on toppings
            if to_decimal(selected.price) != to_decimal(topping.price):
                detail.error = (
                    f"Price mismatch for topping {topping.name}: "
                    f"expected {topping.price}, received {selected.price}"
                )
                return detail
            unit_price += to_decimal(topping.price)

        detail.unit_price = round_money(unit_price)
        detail.total_price = round_money(unit_price * item.qty)
        return detail

    async def validate_order_pricing(
        self,
        tenant_id: str,
        items: Iterable[OrderItem],
        *,
        submitted_total: Decimal,
        coupon: Optional[Coupon] = None,
        submitted_discount: Optional[Decimal] = None,
        submitted_delivery_charge: Optional[Decimal] = None,
        submitted_tax_total: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> PriceValidationResult:
        errors: list[str] = []
        item_details: list[ItemPriceDetail] = []

        sub_total = ZERO
        for item in items:
            detail = await self.calculate_item_price(item, tenant_id)
            item_details.append(detail)
            if detail.error:
                errors.append(detail.error)
                continue
            sub_total += detail.total_price
        sub_total = round_money(sub_total)

        # 1. discount
        discount = ZERO
        if coupon is not None:
            if coupon.tenant_id != tenant_id:
                errors.append(f"Coupon {coupon.code} is not valid for this tenant")
            elif coupon.is_expired(now):
                errors.append(f"Coupon {coupon.code} has expired")
            else:
                discount = round_money(sub_total * to_decimal(coupon.discount) / 100)
        if submitted_discount is not None and not within_tolerance(discount, submitted_discount):
            errors.append(f"Discount mismatch: expected {discount}, received {round_money(submitted_discount)}")

        # 2. delivery on the post-discount amount
        discounted = sub_total - discount
        delivery_config = await self.tenant_config.get_delivery_configuration(tenant_id)
        delivery_info = resolve_delivery_charge(delivery_config, discounted)
        delivery_charge = delivery_info.delivery_charge if delivery_info else ZERO
        if submitted_delivery_charge is not None and not within_tolerance(
            delivery_charge, submitted_delivery_charge
        ):
            errors.append(
                f"Delivery charge mismatch: expected {delivery_charge}, "
                f"received {round_money(submitted_delivery_charge)}"
            )

        # 3./4. delivery is not taxed
        taxable = discounted
        taxes: list[TaxLine] = []
        tax_config = await self.tenant_config.get_tax_configuration(tenant_id)
        if tax_config is not None:
            for component in tax_config.taxes:
                if not component.is_active:
                    continue
                amount = round_money(taxable * to_decimal(component.rate) / 100)
                taxes.append(TaxLine(name=component.name, rate=to_decimal(component.rate), amount=amount))
        tax_total = round_money(sum((t.amount for t in taxes), ZERO))
        if submitted_tax_total is not None and not within_tolerance(tax_total, submitted_tax_total):
            errors.append(f"Tax mismatch: expected {tax_total}, received {round_money(submitted_tax_total)}")

        # 5. final total
        final_total = round_money(taxable + tax_total + delivery_charge)
        if not within_tolerance(final_total, submitted_total):
            errors.append(f"Total mismatch: expected {final_total}, received {round_money(submitted_total)}")

        return PriceValidationResult(
            is_valid=not errors,
            sub_total=sub_total,
            discount=discount,
            delivery_charge=delivery_charge,
            delivery_info=delivery_info,
            taxes=taxes,
            tax_total=tax_total,
            final_total=final_total,
            errors=errors,
            item_details=item_details,
        )
