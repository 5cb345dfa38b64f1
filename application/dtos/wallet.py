"""
钱包相关 DTO
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from application.dtos.common import DTOBase
from domain.wallet.entity import Wallet, WalletTransaction


class WalletBalanceDTO(DTOBase):
    balance: Decimal
    currency: str
    status: str

    @classmethod
    def from_entity(cls, wallet: Wallet) -> "WalletBalanceDTO":
        return cls(balance=wallet.balance, currency=wallet.currency, status=wallet.status.value)


class WalletTransactionDTO(DTOBase):
    id: int
    type: str
    amount: Decimal
    order_id: str
    balance_before: Decimal
    balance_after: Decimal
    status: str
    metadata: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, tx: WalletTransaction) -> "WalletTransactionDTO":
        return cls(
            id=tx.id,
            type=tx.type.value,
            amount=tx.amount,
            order_id=tx.order_id,
            balance_before=tx.balance_before,
            balance_after=tx.balance_after,
            status=tx.status.value,
            metadata=tx.metadata,
            created_at=tx.created_at,
        )


class CashbackPreviewRequest(DTOBase):
    order_amount: Decimal = Field(..., ge=0)
    wallet_amount_used: Decimal = Field(default=Decimal("0"), ge=0)


class CashbackPreviewDTO(DTOBase):
    order_amount: Decimal
    wallet_amount_used: Decimal
    cashback_amount: Decimal
