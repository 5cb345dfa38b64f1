"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.order.entity import (
    Order,
    OrderLine,
    OrderStatus,
    PaymentMode,
    PaymentStatus,
    RefundDetails,
)
from domain.order.repository import OrderRepository
from domain.pricing.entity import TaxLine
from infrastructure.models.order import OrderModel


def _dec(value) -> Decimal:
    return Decimal(str(value if value is not None else 0))


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            tenant_id=model.tenant_id,
            customer_id=model.customer_id,
            items=[OrderLine.from_dict(i) for i in (model.items or [])],
            sub_total=_dec(model.sub_total),
            discount=_dec(model.discount),
            delivery_charge=_dec(model.delivery_charge),
            taxes=[
                TaxLine(name=t["name"], rate=_dec(t["rate"]), amount=_dec(t["amount"]))
                for t in (model.taxes or [])
            ],
            tax_total=_dec(model.tax_total),
            total=_dec(model.total),
            wallet_credits_applied=_dec(model.wallet_credits_applied),
            final_total=_dec(model.final_total),
            payment_mode=PaymentMode(model.payment_mode),
            payment_status=PaymentStatus(model.payment_status),
            status=OrderStatus(model.status),
            coupon_code=model.coupon_code,
            address=model.address,
            comment=model.comment,
            delivery_info=model.delivery_info,
            payment_id=model.payment_id,
            gateway_order_id=model.gateway_order_id,
            refund_details=RefundDetails(
                total_refunded=_dec(model.total_refunded),
                wallet_refunded=_dec(model.wallet_refunded),
                gateway_refunded=_dec(model.gateway_refunded),
                reserved=_dec(model.refund_reserved),
                last_refunded_at=model.last_refunded_at,
            ),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            tenant_id=entity.tenant_id,
            customer_id=entity.customer_id,
            items=[line.to_dict() for line in entity.items],
            sub_total=entity.sub_total,
            discount=entity.discount,
            delivery_charge=entity.delivery_charge,
            taxes=[{"name": t.name, "rate": str(t.rate), "amount": str(t.amount)} for t in entity.taxes],
            tax_total=entity.tax_total,
            total=entity.total,
            wallet_credits_applied=entity.wallet_credits_applied,
            final_total=entity.final_total,
            coupon_code=entity.coupon_code,
            delivery_info=entity.delivery_info,
            payment_mode=entity.payment_mode.value,
            payment_status=entity.payment_status.value,
            payment_id=entity.payment_id,
            gateway_order_id=entity.gateway_order_id,
            status=entity.status.value,
            address=entity.address,
            comment=entity.comment,
            total_refunded=entity.refund_details.total_refunded,
            wallet_refunded=entity.refund_details.wallet_refunded,
            gateway_refunded=entity.refund_details.gateway_refunded,
            refund_reserved=entity.refund_details.reserved,
            last_refunded_at=entity.refund_details.last_refunded_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def add(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        # flush 使唯一约束等错误在事务内尽早暴露
        await self.session.flush()
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order_id))
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.gateway_order_id == gateway_order_id)
        )
        db_order = result.scalars().first()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order) -> Order:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order.id))
        db_order = result.scalar_one()
        # 价格字段下单后不可变；退款累计只经 reserve_refund / apply_refund 原子更新
        db_order.payment_status = order.payment_status.value
        db_order.payment_mode = order.payment_mode.value
        db_order.payment_id = order.payment_id
        db_order.gateway_order_id = order.gateway_order_id
        db_order.status = order.status.value
        await self.session.flush()
        return self._to_entity(db_order)

    async def update_payment_status(
        self,
        order_id: str,
        status: PaymentStatus,
        *,
        expected: tuple[PaymentStatus, ...],
        payment_id: Optional[str] = None,
    ) -> Optional[Order]:
        values: dict = {"payment_status": status.value, "updated_at": datetime.now(timezone.utc)}
        if payment_id:
            values["payment_id"] = payment_id
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status.in_([s.value for s in expected]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self._reload(order_id)

    async def _reload(self, order_id: str) -> Order:
        refreshed = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        return self._to_entity(refreshed.scalar_one())

    async def reserve_refund(self, order_id: str, amount: Decimal) -> Optional[Order]:
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == PaymentStatus.paid.value,
                OrderModel.total_refunded + OrderModel.refund_reserved + amount <= OrderModel.total,
            )
            .values(
                refund_reserved=OrderModel.refund_reserved + amount,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self._reload(order_id)

    async def apply_refund(
        self,
        order_id: str,
        *,
        reserved: Decimal,
        wallet_amount: Decimal,
        gateway_amount: Decimal,
    ) -> Order:
        now = datetime.now(timezone.utc)
        values: dict = {
            "refund_reserved": OrderModel.refund_reserved - reserved,
            "updated_at": now,
        }
        refunded = wallet_amount + gateway_amount
        if refunded > 0:
            values.update(
                wallet_refunded=OrderModel.wallet_refunded + wallet_amount,
                gateway_refunded=OrderModel.gateway_refunded + gateway_amount,
                total_refunded=OrderModel.total_refunded + refunded,
                last_refunded_at=now,
            )
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return await self._reload(order_id)

    async def delete(self, order_id: str) -> bool:
        result = await self.session.execute(delete(OrderModel).where(OrderModel.id == order_id))
        return result.rowcount > 0

    def _scoped(self, stmt, tenant_id: Optional[str], customer_id: Optional[str]):
        if tenant_id:
            stmt = stmt.where(OrderModel.tenant_id == tenant_id)
        if customer_id:
            stmt = stmt.where(OrderModel.customer_id == customer_id)
        return stmt

    async def list(
        self,
        *,
        tenant_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Order]:
        stmt = self._scoped(select(OrderModel), tenant_id, customer_id)
        stmt = stmt.order_by(OrderModel.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count(self, *, tenant_id: Optional[str] = None, customer_id: Optional[str] = None) -> int:
        stmt = self._scoped(select(func.count()).select_from(OrderModel), tenant_id, customer_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())
