"""
Wallet domain entities.

A wallet's balance is only ever changed through conditional increments and
decrements in the repository; these entities are snapshots of stored rows.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.money import ZERO, round_money


class WalletStatus(str, Enum):
    active = "active"
    frozen = "frozen"


class TransactionType(str, Enum):
    cashback = "cashback"
    redemption = "redemption"
    refund = "refund"


class TransactionStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    rolled_back = "rolled_back"


@dataclass
class Wallet:
    id: Optional[int]
    user_id: str
    balance: Decimal = ZERO
    currency: str = "INR"
    status: WalletStatus = WalletStatus.active
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == WalletStatus.active

    def can_cover(self, amount: Decimal) -> bool:
        return self.balance >= amount


@dataclass
class WalletTransaction:
    id: Optional[int]
    wallet_id: int
    user_id: str
    type: TransactionType
    amount: Decimal
    order_id: str
    balance_before: Decimal
    balance_after: Decimal
    status: TransactionStatus = TransactionStatus.completed
    idempotency_key: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def transaction_key(
    order_id: str,
    tx_type: TransactionType,
    amount: Optional[Decimal] = None,
    reference: Optional[str] = None,
) -> str:
    """Ledger uniqueness key for one logical operation on an order.

    Refunds are keyed per amount and caller reference so successive partial
    refunds of the same size still coexist.
    """
    key = f"{order_id}:{tx_type.value}"
    if tx_type == TransactionType.refund and amount is not None:
        key = f"{key}:{round_money(amount)}"
        if reference:
            key = f"{key}:{reference}"
    return key
