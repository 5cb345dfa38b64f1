"""Cashback policy: pure computation of the rebate for an order."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from domain.common.money import ZERO, round_money, to_decimal


@dataclass(frozen=True)
class CashbackPolicy:
    enabled: bool = True
    percentage: Decimal = Decimal("5")
    max_cashback_per_order: Decimal = Decimal("100")
    min_order_amount: Decimal = Decimal("100")
    apply_on_wallet_payment: bool = False

    def calculate(self, order_amount: Decimal, wallet_amount_used: Decimal = ZERO) -> Decimal:
        """Cashback for an order, 0 when the order does not qualify."""
        order_amount = to_decimal(order_amount)
        wallet_amount_used = to_decimal(wallet_amount_used)
        if not self.enabled or order_amount < self.min_order_amount:
            return ZERO

        base = order_amount
        if not self.apply_on_wallet_payment:
            base = order_amount - wallet_amount_used
        if base <= 0:
            return ZERO

        amount = min(base * self.percentage / 100, self.max_cashback_per_order)
        amount = round_money(amount)
        return amount if amount > 0 else ZERO
