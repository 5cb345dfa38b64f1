"""
钱包账本应用服务（application/services）

每个改变余额的操作都在一个 UoW 事务内完成：条件更新钱包余额 + 追加流水，要么都提交，要么都回滚。
幂等依据 (order_id, type)：事先查询已有流水，并由流水表上的唯一幂等键兜底并发重复写入。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    DuplicateWalletTransactionException,
    InsufficientWalletBalanceException,
    WalletAlreadyExistsException,
    WalletNotFoundException,
    WalletUpdateFailedException,
)
from domain.common.money import ZERO, round_money, to_decimal
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.wallet.cashback import CashbackPolicy
from domain.wallet.entity import (
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletTransaction,
    transaction_key,
)


logger = get_logger(__name__)

_LIVE = (TransactionStatus.pending, TransactionStatus.completed)


class WalletLedgerService:
    """钱包账本：余额非负、流水只追加、同一订单同一类型只记一次"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        cashback_policy: CashbackPolicy,
        *,
        currency: str = "INR",
    ) -> None:
        self._uow_factory = uow_factory
        self._cashback = cashback_policy
        self._currency = currency

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def get_or_create_wallet(self, user_id: str) -> Wallet:
        async with self._uow_factory(readonly=True) as uow:
            wallet = await uow.wallet_repository.get_by_user_id(user_id)
        if wallet is not None:
            return wallet

        try:
            async with self._uow_factory() as uow:
                wallet = await uow.wallet_repository.create(
                    Wallet(id=None, user_id=user_id, currency=self._currency)
                )
            logger.info("wallet_created", user_id=user_id)
            return wallet
        except WalletAlreadyExistsException:
            # 并发创建输掉竞争：改为读取
            async with self._uow_factory(readonly=True) as uow:
                wallet = await uow.wallet_repository.get_by_user_id(user_id)
            if wallet is None:
                raise WalletNotFoundException(user_id)
            return wallet

    async def get_balance(self, user_id: str) -> Wallet:
        return await self.get_or_create_wallet(user_id)

    def calculate_cashback(self, order_amount: Decimal, wallet_amount_used: Decimal = ZERO) -> Decimal:
        return self._cashback.calculate(order_amount, wallet_amount_used)

    async def get_transactions(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> Tuple[List[WalletTransaction], int]:
        page = max(1, page)
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.wallet_transaction_repository.list_by_user(
                user_id, skip=(page - 1) * limit, limit=limit
            )
            total = await uow.wallet_transaction_repository.count_by_user(user_id)
        return items, total

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    async def _find_live(self, order_id: str, tx_type: TransactionType) -> Optional[WalletTransaction]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.wallet_transaction_repository.find_for_order(order_id, tx_type, _LIVE)

    async def _existing_after_conflict(self, exc: DuplicateWalletTransactionException) -> WalletTransaction:
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.wallet_transaction_repository.get_by_idempotency_key(exc.idempotency_key)
        if existing is None:
            raise exc
        return existing

    async def add_cashback(
        self,
        user_id: str,
        order_id: str,
        order_amount: Decimal,
        wallet_amount_used: Decimal = ZERO,
    ) -> Optional[WalletTransaction]:
        """按订单返现；不满足条件返回 None"""
        order_amount = to_decimal(order_amount)
        policy = self._cashback
        if not policy.enabled:
            return None
        if order_amount < policy.min_order_amount:
            logger.info(
                "cashback_skipped_min_amount",
                order_id=order_id,
                order_amount=str(order_amount),
                min_order_amount=str(policy.min_order_amount),
            )
            return None

        existing = await self._find_live(order_id, TransactionType.cashback)
        if existing is not None:
            logger.info("cashback_already_applied", order_id=order_id, transaction_id=existing.id)
            return existing

        amount = policy.calculate(order_amount, wallet_amount_used)
        if amount <= 0:
            return None

        await self.get_or_create_wallet(user_id)
        key = transaction_key(order_id, TransactionType.cashback)
        try:
            async with self._uow_factory() as uow:
                wallet = await uow.wallet_repository.increment_balance(user_id, amount, require_active=True)
                if wallet is None:
                    raise WalletUpdateFailedException("Wallet not found or not active", user_id=user_id)
                tx = await uow.wallet_transaction_repository.create(
                    WalletTransaction(
                        id=None,
                        wallet_id=wallet.id,
                        user_id=user_id,
                        type=TransactionType.cashback,
                        amount=amount,
                        order_id=order_id,
                        balance_before=round_money(wallet.balance - amount),
                        balance_after=wallet.balance,
                        status=TransactionStatus.completed,
                        idempotency_key=key,
                        metadata={
                            "order_amount": str(order_amount),
                            "wallet_amount_used": str(to_decimal(wallet_amount_used)),
                            "percentage": str(policy.percentage),
                        },
                    )
                )
        except DuplicateWalletTransactionException as exc:
            return await self._existing_after_conflict(exc)

        logger.info("cashback_added", user_id=user_id, order_id=order_id, amount=str(amount))
        return tx

    async def redeem_credits(self, user_id: str, amount: Decimal, order_id: str) -> WalletTransaction:
        """扣减钱包余额，流水状态为 pending，待订单结果确定后完成或回滚"""
        amount = round_money(amount)
        if amount <= 0:
            raise DomainValidationException("Redemption amount must be positive", field="amount")

        existing = await self._find_live(order_id, TransactionType.redemption)
        if existing is not None:
            logger.info("redemption_already_applied", order_id=order_id, transaction_id=existing.id)
            return existing

        wallet = await self.get_or_create_wallet(user_id)
        # 预检查仅用于给出友好错误，真正的约束在条件更新里
        if not wallet.can_cover(amount):
            raise InsufficientWalletBalanceException(available=wallet.balance, required=amount)

        key = transaction_key(order_id, TransactionType.redemption)
        try:
            async with self._uow_factory() as uow:
                updated = await uow.wallet_repository.decrement_balance(user_id, amount)
                if updated is None:
                    raise WalletUpdateFailedException(user_id=user_id)
                tx = await uow.wallet_transaction_repository.create(
                    WalletTransaction(
                        id=None,
                        wallet_id=updated.id,
                        user_id=user_id,
                        type=TransactionType.redemption,
                        amount=-amount,
                        order_id=order_id,
                        balance_before=round_money(updated.balance + amount),
                        balance_after=updated.balance,
                        status=TransactionStatus.pending,
                        idempotency_key=key,
                    )
                )
        except DuplicateWalletTransactionException as exc:
            return await self._existing_after_conflict(exc)

        logger.info("credits_redeemed", user_id=user_id, order_id=order_id, amount=str(amount))
        return tx

    async def complete_redemption(self, order_id: str) -> Optional[WalletTransaction]:
        async with self._uow_factory() as uow:
            pending = await uow.wallet_transaction_repository.find_for_order(
                order_id, TransactionType.redemption, (TransactionStatus.pending,)
            )
            if pending is None:
                return None
            tx = await uow.wallet_transaction_repository.update_status(
                pending.id, TransactionStatus.completed, expected=(TransactionStatus.pending,)
            )
        if tx is None:
            # 并发的回滚/完成已先处理该流水
            logger.info("redemption_already_settled", order_id=order_id, transaction_id=pending.id)
            return None
        logger.info("redemption_completed", order_id=order_id, transaction_id=pending.id)
        return tx

    async def rollback_redemption(self, user_id: str, order_id: str) -> Optional[WalletTransaction]:
        """退回 pending 兑换的金额；没有 pending 流水时告警并跳过（防止重复回滚）

        先以 status='pending' 为条件改写流水状态，命中后才加回余额，两步在同一事务内。
        """
        async with self._uow_factory() as uow:
            pending = await uow.wallet_transaction_repository.find_for_order(
                order_id, TransactionType.redemption, (TransactionStatus.pending,)
            )
            tx = None
            if pending is not None:
                tx = await uow.wallet_transaction_repository.update_status(
                    pending.id,
                    TransactionStatus.rolled_back,
                    expected=(TransactionStatus.pending,),
                    release_key=True,
                )
            if tx is None:
                logger.warning("redemption_rollback_skipped", user_id=user_id, order_id=order_id)
                return None
            refund_amount = abs(tx.amount)
            wallet = await uow.wallet_repository.increment_balance(
                tx.user_id, refund_amount, require_active=False
            )
            if wallet is None:
                raise WalletNotFoundException(tx.user_id)
            tx = await uow.wallet_transaction_repository.merge_metadata(
                tx.id, {"rolled_back_balance_after": str(wallet.balance)}
            )
        logger.info(
            "redemption_rolled_back",
            user_id=tx.user_id,
            order_id=order_id,
            amount=str(refund_amount),
        )
        return tx

    async def refund_to_wallet(
        self, user_id: str, amount: Decimal, order_id: str, *, reference: Optional[str] = None
    ) -> WalletTransaction:
        """退款入钱包；reference 区分同一订单上金额相同的多次部分退款"""
        amount = round_money(amount)
        if amount <= 0:
            raise DomainValidationException("Refund amount must be positive", field="amount")

        key = transaction_key(order_id, TransactionType.refund, amount, reference)
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.wallet_transaction_repository.get_by_idempotency_key(key)
        if existing is not None:
            logger.info("wallet_refund_already_applied", order_id=order_id, transaction_id=existing.id)
            return existing

        await self.get_or_create_wallet(user_id)
        try:
            async with self._uow_factory() as uow:
                wallet = await uow.wallet_repository.increment_balance(user_id, amount, require_active=False)
                if wallet is None:
                    raise WalletNotFoundException(user_id)
                tx = await uow.wallet_transaction_repository.create(
                    WalletTransaction(
                        id=None,
                        wallet_id=wallet.id,
                        user_id=user_id,
                        type=TransactionType.refund,
                        amount=amount,
                        order_id=order_id,
                        balance_before=round_money(wallet.balance - amount),
                        balance_after=wallet.balance,
                        status=TransactionStatus.completed,
                        idempotency_key=key,
                    )
                )
        except DuplicateWalletTransactionException as exc:
            return await self._existing_after_conflict(exc)

        logger.info("wallet_refunded", user_id=user_id, order_id=order_id, amount=str(amount))
        return tx

    async def settle_full_payment(
        self, user_id: str, order_id: str, amount: Decimal, order_total: Decimal
    ) -> Optional[WalletTransaction]:
        """全额钱包支付：兑换 → 完成 → 返现，各步均按订单幂等，可整体重试"""
        await self.redeem_credits(user_id, amount, order_id)
        await self.complete_redemption(order_id)
        return await self.add_cashback(user_id, order_id, order_total, amount)
