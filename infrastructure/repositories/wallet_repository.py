"""
钱包仓储实现

余额变更全部通过带条件的 UPDATE ... RETURNING 完成，条件（状态、余额）在同一条语句内判断，
不信任事先读取到的快照。
"""
from decimal import Decimal
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import (
    DuplicateWalletTransactionException,
    WalletAlreadyExistsException,
)
from domain.wallet.entity import (
    TransactionStatus,
    TransactionType,
    Wallet,
    WalletStatus,
    WalletTransaction,
)
from domain.wallet.repository import WalletRepository, WalletTransactionRepository
from infrastructure.models.wallet import WalletModel, WalletTransactionModel


logger = get_logger(__name__)


def _dec(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


class SQLAlchemyWalletRepository(WalletRepository):
    """钱包仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletModel) -> Wallet:
        return Wallet(
            id=model.id,
            user_id=model.user_id,
            balance=_dec(model.balance),
            currency=model.currency,
            status=WalletStatus(model.status),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_user_id(self, user_id: str) -> Optional[Wallet]:
        result = await self.session.execute(
            select(WalletModel)
            .where(WalletModel.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create(self, wallet: Wallet) -> Wallet:
        model = WalletModel(
            user_id=wallet.user_id,
            balance=wallet.balance,
            currency=wallet.currency,
            status=wallet.status.value,
        )
        try:
            self.session.add(model)
            await self.session.flush()
        except IntegrityError as exc:
            # user_id 唯一：并发创建时后到者按“已存在”处理，事务由 UoW 回滚
            raise WalletAlreadyExistsException(wallet.user_id) from exc
        return self._to_entity(model)

    async def _apply_delta(self, stmt) -> Optional[Wallet]:
        result = await self.session.execute(
            stmt.returning(
                WalletModel.id,
                WalletModel.user_id,
                WalletModel.balance,
                WalletModel.currency,
                WalletModel.status,
                WalletModel.created_at,
                WalletModel.updated_at,
            ).execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return Wallet(
            id=row.id,
            user_id=row.user_id,
            balance=_dec(row.balance),
            currency=row.currency,
            status=WalletStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def increment_balance(
        self, user_id: str, amount: Decimal, *, require_active: bool = True
    ) -> Optional[Wallet]:
        stmt = (
            update(WalletModel)
            .where(WalletModel.user_id == user_id)
            .values(balance=WalletModel.balance + amount, updated_at=datetime.now(timezone.utc))
        )
        if require_active:
            stmt = stmt.where(WalletModel.status == WalletStatus.active.value)
        return await self._apply_delta(stmt)

    async def decrement_balance(self, user_id: str, amount: Decimal) -> Optional[Wallet]:
        stmt = (
            update(WalletModel)
            .where(
                WalletModel.user_id == user_id,
                WalletModel.status == WalletStatus.active.value,
                WalletModel.balance >= amount,
            )
            .values(balance=WalletModel.balance - amount, updated_at=datetime.now(timezone.utc))
        )
        return await self._apply_delta(stmt)


class SQLAlchemyWalletTransactionRepository(WalletTransactionRepository):
    """钱包流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletTransactionModel) -> WalletTransaction:
        return WalletTransaction(
            id=model.id,
            wallet_id=model.wallet_id,
            user_id=model.user_id,
            type=TransactionType(model.type),
            amount=_dec(model.amount),
            order_id=model.order_id,
            balance_before=_dec(model.balance_before),
            balance_after=_dec(model.balance_after),
            status=TransactionStatus(model.status),
            idempotency_key=model.idempotency_key,
            metadata=dict(model.extra_metadata or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, tx: WalletTransaction) -> WalletTransaction:
        model = WalletTransactionModel(
            wallet_id=tx.wallet_id,
            user_id=tx.user_id,
            type=tx.type.value,
            amount=tx.amount,
            order_id=tx.order_id,
            balance_before=tx.balance_before,
            balance_after=tx.balance_after,
            status=tx.status.value,
            idempotency_key=tx.idempotency_key,
            extra_metadata=tx.metadata or None,
        )
        try:
            self.session.add(model)
            await self.session.flush()
        except IntegrityError as exc:
            # 唯一幂等键冲突：同一笔业务已由并发请求写入，异常抛出后由 UoW 回滚整个事务
            logger.info(
                "wallet_transaction_duplicate",
                order_id=tx.order_id,
                type=tx.type.value,
                idempotency_key=tx.idempotency_key,
            )
            raise DuplicateWalletTransactionException(tx.idempotency_key or "") from exc
        return self._to_entity(model)

    async def get_by_idempotency_key(self, key: str) -> Optional[WalletTransaction]:
        result = await self.session.execute(
            select(WalletTransactionModel).where(WalletTransactionModel.idempotency_key == key)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def find_for_order(
        self,
        order_id: str,
        tx_type: TransactionType,
        statuses: tuple[TransactionStatus, ...],
    ) -> Optional[WalletTransaction]:
        stmt = select(WalletTransactionModel).where(
            WalletTransactionModel.order_id == order_id,
            WalletTransactionModel.type == tx_type.value,
            WalletTransactionModel.status.in_([s.value for s in statuses]),
        )
        stmt = stmt.order_by(WalletTransactionModel.id.desc())
        result = await self.session.execute(stmt)
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def _reload(self, tx_id: int) -> WalletTransaction:
        result = await self.session.execute(
            select(WalletTransactionModel)
            .where(WalletTransactionModel.id == tx_id)
            .execution_options(populate_existing=True)
        )
        return self._to_entity(result.scalar_one())

    async def update_status(
        self,
        tx_id: int,
        status: TransactionStatus,
        *,
        expected: tuple[TransactionStatus, ...],
        release_key: bool = False,
    ) -> Optional[WalletTransaction]:
        values: dict = {"status": status.value}
        if release_key:
            values["idempotency_key"] = None
        # 状态条件放在 UPDATE 内，并发的完成/回滚只有一方命中
        result = await self.session.execute(
            update(WalletTransactionModel)
            .where(
                WalletTransactionModel.id == tx_id,
                WalletTransactionModel.status.in_([s.value for s in expected]),
            )
            .values(**values)
            .returning(WalletTransactionModel.id)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            return None
        return await self._reload(tx_id)

    async def merge_metadata(self, tx_id: int, metadata: dict) -> WalletTransaction:
        result = await self.session.execute(
            select(WalletTransactionModel)
            .where(WalletTransactionModel.id == tx_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one()
        model.extra_metadata = {**(model.extra_metadata or {}), **metadata}
        await self.session.flush()
        return self._to_entity(model)

    async def list_by_user(self, user_id: str, skip: int = 0, limit: int = 20) -> List[WalletTransaction]:
        result = await self.session.execute(
            select(WalletTransactionModel)
            .where(WalletTransactionModel.user_id == user_id)
            .order_by(WalletTransactionModel.created_at.desc(), WalletTransactionModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_user(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(WalletTransactionModel).where(
                WalletTransactionModel.user_id == user_id
            )
        )
        return int(result.scalar_one())
