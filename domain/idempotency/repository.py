"""幂等记录仓储抽象"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from domain.idempotency.entity import IdempotencyRecord


class IdempotencyRepository(ABC):

    @abstractmethod
    async def find_active(self, key: str, user_id: str, endpoint: str) -> Optional[IdempotencyRecord]:
        """查找未过期的记录"""
        ...

    @abstractmethod
    async def add(self, record: IdempotencyRecord) -> IdempotencyRecord:
        """写入记录；同一元组已存在未过期记录时抛出 IdempotencyConflictException"""
        ...

    @abstractmethod
    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        ...
