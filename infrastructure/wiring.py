"""服务装配：由 API lifespan 与 Celery worker 共用"""
from __future__ import annotations

from typing import Callable

from application.services.wallet_service import WalletLedgerService
from core.config import CashbackSettings, settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.wallet.cashback import CashbackPolicy


def cashback_policy_from_settings(cfg: CashbackSettings) -> CashbackPolicy:
    return CashbackPolicy(
        enabled=cfg.enabled,
        percentage=cfg.percentage,
        max_cashback_per_order=cfg.max_cashback_per_order,
        min_order_amount=cfg.min_order_amount,
        apply_on_wallet_payment=cfg.apply_on_wallet_payment,
    )


def build_wallet_ledger(uow_factory: Callable[..., AbstractUnitOfWork]) -> WalletLedgerService:
    return WalletLedgerService(
        uow_factory,
        cashback_policy_from_settings(settings.cashback),
        currency=settings.DEFAULT_CURRENCY,
    )
