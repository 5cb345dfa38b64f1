"""
Money helpers shared by pricing, wallet and gateway code.

All monetary arithmetic uses Decimal; values are rounded half-up to two
decimals at every step the breakdown is reported.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Submitted figures may differ from the recomputed ones by at most one cent
PRICE_TOLERANCE = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # float goes through str so 0.1 stays 0.1
    return Decimal(str(value))


def round_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(computed: Number, submitted: Number) -> bool:
    return abs(to_decimal(computed) - to_decimal(submitted)) <= PRICE_TOLERANCE


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str = "INR"

    def to_minor(self, exponent: int = 2) -> int:
        """Integer amount in the smallest currency unit (paise, cents)."""
        scaled = to_decimal(self.amount) * (Decimal(10) ** exponent)
        return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))

    @classmethod
    def from_minor(cls, minor: int, currency: str = "INR", exponent: int = 2) -> "Money":
        return cls(round_money(Decimal(minor) / (Decimal(10) ** exponent)), currency)
