"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.idempotency.repository import IdempotencyRepository
from domain.order.repository import OrderRepository
from domain.wallet.repository import WalletRepository, WalletTransactionRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    正常退出时提交，异常退出时回滚；钱包余额与流水、订单与幂等记录都在同一个 UoW 内写入。
    """

    order_repository: OrderRepository
    wallet_repository: WalletRepository
    wallet_transaction_repository: WalletTransactionRepository
    idempotency_repository: IdempotencyRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.order_repository = None  # type: ignore[assignment]
        self.wallet_repository = None  # type: ignore[assignment]
        self.wallet_transaction_repository = None  # type: ignore[assignment]
        self.idempotency_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
