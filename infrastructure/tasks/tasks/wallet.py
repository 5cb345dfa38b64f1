"""Wallet settlement retry tasks.

Scheduled when a post-commit wallet step failed after the order was stored.
Every ledger operation is idempotent per order, so re-running is safe.
"""
from __future__ import annotations

from decimal import Decimal

from celery import shared_task

from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from ..utils.base_task import BaseTask
from ._runtime import wallet_ledger

logger = get_logger(__name__)

_RETRY_OPTIONS = dict(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    dont_autoretry_for=(BusinessException,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)


def _tx_id(tx) -> int | None:
    return tx.id if tx is not None else None


@shared_task(name="wallet.redeem_credits", **_RETRY_OPTIONS)
def redeem_credits(self, user_id: str, order_id: str, amount: str) -> int | None:
    async def _run():
        async with wallet_ledger() as ledger:
            return await ledger.redeem_credits(user_id, Decimal(amount), order_id)

    tx = self.run_async(_run())
    logger.info("wallet_task_redeem_done", order_id=order_id, transaction_id=_tx_id(tx))
    return _tx_id(tx)


@shared_task(name="wallet.complete_redemption", **_RETRY_OPTIONS)
def complete_redemption(self, order_id: str) -> int | None:
    async def _run():
        async with wallet_ledger() as ledger:
            return await ledger.complete_redemption(order_id)

    return _tx_id(self.run_async(_run()))


@shared_task(name="wallet.add_cashback", **_RETRY_OPTIONS)
def add_cashback(self, user_id: str, order_id: str, order_amount: str, wallet_amount_used: str = "0") -> int | None:
    async def _run():
        async with wallet_ledger() as ledger:
            return await ledger.add_cashback(user_id, order_id, Decimal(order_amount), Decimal(wallet_amount_used))

    return _tx_id(self.run_async(_run()))


@shared_task(name="wallet.rollback_redemption", **_RETRY_OPTIONS)
def rollback_redemption(self, user_id: str, order_id: str) -> int | None:
    async def _run():
        async with wallet_ledger() as ledger:
            return await ledger.rollback_redemption(user_id, order_id)

    return _tx_id(self.run_async(_run()))


@shared_task(name="wallet.settle_full_payment", **_RETRY_OPTIONS)
def settle_full_payment(self, user_id: str, order_id: str, amount: str, order_total: str) -> int | None:
    async def _run():
        async with wallet_ledger() as ledger:
            return await ledger.settle_full_payment(user_id, order_id, Decimal(amount), Decimal(order_total))

    tx = self.run_async(_run())
    logger.info("wallet_task_full_payment_done", order_id=order_id, cashback_transaction_id=_tx_id(tx))
    return _tx_id(tx)
