"""幂等记录查询与清理

记录的写入发生在业务事务内部（见 OrderService.create_order），这里只负责请求入口的重放查询
与过期清理。
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.idempotency.entity import IdempotencyContext, IdempotencyRecord


logger = get_logger(__name__)


class IdempotencyService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], *, ttl_seconds: int = 86400) -> None:
        self._uow_factory = uow_factory
        self.ttl_seconds = ttl_seconds

    async def find_replay(self, ctx: IdempotencyContext) -> Optional[IdempotencyRecord]:
        async with self._uow_factory(readonly=True) as uow:
            record = await uow.idempotency_repository.find_active(ctx.key, ctx.user_id, ctx.endpoint)
        if record is not None:
            logger.info("idempotency_hit", key=ctx.key, user_id=ctx.user_id, endpoint=ctx.endpoint)
        return record

    def build_record(self, ctx: IdempotencyContext, response: dict, status_code: int) -> IdempotencyRecord:
        return IdempotencyRecord.new(
            key=ctx.key,
            user_id=ctx.user_id,
            endpoint=ctx.endpoint,
            response=response,
            status_code=status_code,
            ttl_seconds=self.ttl_seconds,
        )

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        async with self._uow_factory() as uow:
            removed = await uow.idempotency_repository.purge_expired(now)
        logger.info("idempotency_purged", removed=removed)
        return removed
