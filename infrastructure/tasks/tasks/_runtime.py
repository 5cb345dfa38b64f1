"""Per-task async runtime for Celery workers.

Each task invocation runs in its own event loop (asyncio.run), so it gets its
own engine as well; pooled asyncpg connections cannot cross event loops.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import async_sessionmaker

from application.services.idempotency_service import IdempotencyService
from application.services.wallet_service import WalletLedgerService
from core.config import settings
from infrastructure.database import build_engine
from infrastructure.unit_of_work import uow_factory_for
from infrastructure.wiring import build_wallet_ledger


@asynccontextmanager
async def _uow_factory() -> AsyncIterator:
    engine = build_engine(settings.database.url)
    try:
        yield uow_factory_for(async_sessionmaker(bind=engine, expire_on_commit=False))
    finally:
        await engine.dispose()


@asynccontextmanager
async def wallet_ledger() -> AsyncIterator[WalletLedgerService]:
    async with _uow_factory() as factory:
        yield build_wallet_ledger(factory)


@asynccontextmanager
async def idempotency_service() -> AsyncIterator[IdempotencyService]:
    async with _uow_factory() as factory:
        yield IdempotencyService(factory, ttl_seconds=settings.idempotency.ttl_seconds)
