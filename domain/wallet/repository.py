"""Wallet 仓储抽象"""
from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from domain.wallet.entity import TransactionStatus, TransactionType, Wallet, WalletTransaction


class WalletRepository(ABC):

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> Optional[Wallet]:
        ...

    @abstractmethod
    async def create(self, wallet: Wallet) -> Wallet:
        """插入新钱包；user_id 已存在时抛出 WalletAlreadyExistsException"""
        ...

    @abstractmethod
    async def increment_balance(
        self, user_id: str, amount: Decimal, *, require_active: bool = True
    ) -> Optional[Wallet]:
        """原子加款，返回更新后的钱包；条件不满足返回 None"""
        ...

    @abstractmethod
    async def decrement_balance(self, user_id: str, amount: Decimal) -> Optional[Wallet]:
        """原子扣款（status=active 且 balance>=amount），返回更新后的钱包；未命中返回 None"""
        ...


class WalletTransactionRepository(ABC):

    @abstractmethod
    async def create(self, tx: WalletTransaction) -> WalletTransaction:
        """插入流水；幂等键冲突时抛出 DuplicateWalletTransactionException"""
        ...

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[WalletTransaction]:
        ...

    @abstractmethod
    async def find_for_order(
        self,
        order_id: str,
        tx_type: TransactionType,
        statuses: tuple[TransactionStatus, ...],
    ) -> Optional[WalletTransaction]:
        ...

    @abstractmethod
    async def update_status(
        self,
        tx_id: int,
        status: TransactionStatus,
        *,
        expected: tuple[TransactionStatus, ...],
        release_key: bool = False,
    ) -> Optional[WalletTransaction]:
        """仅当当前状态属于 expected 时改写状态；未命中返回 None"""
        ...

    @abstractmethod
    async def merge_metadata(self, tx_id: int, metadata: dict) -> WalletTransaction:
        ...

    @abstractmethod
    async def list_by_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[WalletTransaction]:
        ...

    @abstractmethod
    async def count_by_user(self, user_id: str) -> int:
        ...
