"""Periodic housekeeping tasks."""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from ._runtime import idempotency_service


@shared_task(name="idempotency.purge_expired", bind=True, base=BaseTask)
def purge_expired_idempotency_records(self) -> int:
    async def _run() -> int:
        async with idempotency_service() as service:
            return await service.purge_expired()

    return self.run_async(_run())
