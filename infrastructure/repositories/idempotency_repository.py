"""
幂等记录仓储实现
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import IdempotencyConflictException
from domain.idempotency.entity import IdempotencyRecord
from domain.idempotency.repository import IdempotencyRepository
from infrastructure.models.idempotency import IdempotencyRecordModel


class SQLAlchemyIdempotencyRepository(IdempotencyRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: IdempotencyRecordModel) -> IdempotencyRecord:
        return IdempotencyRecord(
            id=model.id,
            key=model.key,
            user_id=model.user_id,
            endpoint=model.endpoint,
            response=model.response,
            status_code=model.status_code,
            created_at=model.created_at,
            expires_at=model.expires_at,
        )

    async def find_active(self, key: str, user_id: str, endpoint: str) -> Optional[IdempotencyRecord]:
        result = await self.session.execute(
            select(IdempotencyRecordModel).where(
                IdempotencyRecordModel.key == key,
                IdempotencyRecordModel.user_id == user_id,
                IdempotencyRecordModel.endpoint == endpoint,
                IdempotencyRecordModel.expires_at > datetime.now(timezone.utc),
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def add(self, record: IdempotencyRecord) -> IdempotencyRecord:
        # 过期记录仍占着唯一索引，先清掉
        await self.session.execute(
            delete(IdempotencyRecordModel).where(
                IdempotencyRecordModel.key == record.key,
                IdempotencyRecordModel.user_id == record.user_id,
                IdempotencyRecordModel.endpoint == record.endpoint,
                IdempotencyRecordModel.expires_at <= datetime.now(timezone.utc),
            )
        )
        model = IdempotencyRecordModel(
            key=record.key,
            user_id=record.user_id,
            endpoint=record.endpoint,
            response=record.response,
            status_code=record.status_code,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
        try:
            self.session.add(model)
            await self.session.flush()
        except IntegrityError as exc:
            raise IdempotencyConflictException(record.key) from exc
        return self._to_entity(model)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        result = await self.session.execute(
            delete(IdempotencyRecordModel).where(
                IdempotencyRecordModel.expires_at <= (now or datetime.now(timezone.utc))
            )
        )
        return result.rowcount or 0
