"""
订单应用服务：下单结算与订单管理

下单流程：
1. 按角色解析租户
2. 校验优惠券，服务端重算价格（有任何误差即整体拒绝，并返回全部错误）
3. 计算钱包抵扣后的应付金额
4. 单个事务内写入订单与幂等记录
5. 提交后执行钱包扣减/返现与事件发布，失败只记录日志（可交给 Celery 重试）
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from application.dtos.orders import CreateOrderDTO, OrderResponseDTO
from application.ports.event_publisher import OrderEventPublisher
from application.ports.task_dispatcher import TaskDispatcherPort
from application.services.idempotency_service import IdempotencyService
from application.services.post_commit import PostCommitActions, PostCommitResult
from application.services.wallet_service import WalletLedgerService
from core.logging_config import get_logger
from core.response import success_response
from domain.common.exceptions import (
    CouponExpiredException,
    CouponNotFoundException,
    ForbiddenException,
    OrderNotFoundException,
    PriceValidationException,
)
from domain.common.principal import Principal, Role
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.idempotency.entity import IdempotencyContext
from domain.order.entity import Order, OrderLine, OrderStatus, PaymentStatus
from domain.order.events import OrderEvent, OrderEventType
from domain.pricing.calculator import PriceCalculator
from domain.pricing.repository import TenantConfigRepository


logger = get_logger(__name__)

ORDER_CREATED_STATUS = 201


@dataclass
class SettlementResult:
    order: Order
    response: dict
    status_code: int
    post_commit: PostCommitResult


class OrderService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        calculator: PriceCalculator,
        tenant_config: TenantConfigRepository,
        ledger: WalletLedgerService,
        idempotency: IdempotencyService,
        publisher: Optional[OrderEventPublisher] = None,
        dispatcher: Optional[TaskDispatcherPort] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._calculator = calculator
        self._tenant_config = tenant_config
        self._ledger = ledger
        self._idempotency = idempotency
        self._publisher = publisher
        self._dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def create_order(
        self,
        principal: Principal,
        dto: CreateOrderDTO,
        *,
        idempotency: Optional[IdempotencyContext] = None,
    ) -> SettlementResult:
        tenant_id = principal.resolve_tenant(dto.tenant_id)
        now = datetime.now(timezone.utc)

        coupon = None
        if dto.coupon_code:
            coupon = await self._tenant_config.get_coupon(dto.coupon_code, tenant_id)
            if coupon is None:
                raise CouponNotFoundException(dto.coupon_code)
            if coupon.is_expired(now):
                raise CouponExpiredException(dto.coupon_code)

        items = [item.to_domain() for item in dto.items]
        pricing = await self._calculator.validate_order_pricing(
            tenant_id,
            items,
            submitted_total=dto.total,
            coupon=coupon,
            submitted_discount=dto.discount,
            submitted_delivery_charge=dto.delivery_charge,
            submitted_tax_total=dto.tax_total,
            now=now,
        )
        if not pricing.is_valid:
            logger.info(
                "order_price_validation_failed",
                tenant_id=tenant_id,
                customer_id=principal.user_id,
                errors=pricing.errors,
            )
            raise PriceValidationException(pricing.errors, computed=pricing.summary())

        lines = [
            OrderLine(
                product_id=item.product_id,
                name=item.name,
                qty=item.qty,
                price_configuration=dict(item.price_configuration),
                toppings=[{"id": t.id, "name": t.name, "price": str(t.price)} for t in item.toppings],
                unit_price=detail.unit_price,
                total_price=detail.total_price,
            )
            for item, detail in zip(items, pricing.item_details)
        ]
        order = Order.place(
            tenant_id=tenant_id,
            customer_id=principal.user_id,
            items=lines,
            pricing=pricing,
            wallet_credits_applied=dto.wallet_credits_applied,
            payment_mode=dto.payment_mode,
            coupon_code=coupon.code if coupon else None,
            address=dto.address,
            comment=dto.comment,
        )

        async with self._uow_factory() as uow:
            order = await uow.order_repository.add(order)
            payload = OrderResponseDTO.from_entity(order).to_payload()
            body = success_response(data=payload, message="Order created").model_dump(mode="json")
            if idempotency is not None:
                await uow.idempotency_repository.add(
                    self._idempotency.build_record(idempotency, body, ORDER_CREATED_STATUS)
                )

        logger.info(
            "order_created",
            order_id=order.id,
            tenant_id=tenant_id,
            customer_id=order.customer_id,
            total=str(order.total),
            final_total=str(order.final_total),
            wallet_credits_applied=str(order.wallet_credits_applied),
            payment_status=order.payment_status.value,
        )

        actions = self._settlement_actions(order, payload)
        outcome = await actions.run(order_id=order.id)
        return SettlementResult(order=order, response=body, status_code=ORDER_CREATED_STATUS, post_commit=outcome)

    def _settlement_actions(self, order: Order, payload: dict) -> PostCommitActions:
        actions = PostCommitActions(self._dispatcher)
        ledger = self._ledger

        if order.is_full_wallet_payment:
            actions.add(
                "wallet_full_payment",
                lambda: ledger.settle_full_payment(
                    order.customer_id, order.id, order.wallet_credits_applied, order.total
                ),
                retry_task="wallet.settle_full_payment",
                retry_kwargs={
                    "user_id": order.customer_id,
                    "order_id": order.id,
                    "amount": str(order.wallet_credits_applied),
                    "order_total": str(order.total),
                },
            )
            event_type = OrderEventType.PAYMENT_COMPLETED
        else:
            if order.uses_wallet:
                actions.add(
                    "wallet_redeem",
                    lambda: ledger.redeem_credits(order.customer_id, order.wallet_credits_applied, order.id),
                    retry_task="wallet.redeem_credits",
                    retry_kwargs={
                        "user_id": order.customer_id,
                        "order_id": order.id,
                        "amount": str(order.wallet_credits_applied),
                    },
                )
            event_type = OrderEventType.ORDER_CREATED

        if self._publisher is not None:
            event = OrderEvent(event=event_type, order_id=order.id, data=payload)
            actions.add("publish_" + event_type.value, lambda: self._publisher.publish(event))
        return actions

    # ------------------------------------------------------------------
    # Queries and management
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_visible(principal: Principal, order: Order) -> None:
        if principal.role == Role.customer and order.customer_id != principal.user_id:
            raise ForbiddenException("You can only access your own orders")
        if principal.role == Role.manager and order.tenant_id != principal.tenant_id:
            raise ForbiddenException("You can only access orders of your tenant")

    async def get_order(self, principal: Principal, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        self._ensure_visible(principal, order)
        return order

    async def list_orders(
        self,
        principal: Principal,
        *,
        tenant_id: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Order], int]:
        customer_id: Optional[str] = None
        if principal.role == Role.manager:
            tenant_id = principal.resolve_tenant(tenant_id)
        elif principal.role == Role.customer:
            customer_id = principal.user_id
        return await self._list(tenant_id=tenant_id, customer_id=customer_id, page=page, size=size)

    async def list_my_orders(self, principal: Principal, *, page: int = 1, size: int = 20) -> Tuple[List[Order], int]:
        return await self._list(tenant_id=None, customer_id=principal.user_id, page=page, size=size)

    async def _list(
        self, *, tenant_id: Optional[str], customer_id: Optional[str], page: int, size: int
    ) -> Tuple[List[Order], int]:
        page = max(1, page)
        async with self._uow_factory(readonly=True) as uow:
            items = await uow.order_repository.list(
                tenant_id=tenant_id, customer_id=customer_id, skip=(page - 1) * size, limit=size
            )
            total = await uow.order_repository.count(tenant_id=tenant_id, customer_id=customer_id)
        return items, total

    async def update_status(self, principal: Principal, order_id: str, status: OrderStatus) -> Order:
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            self._ensure_visible(principal, order)
            if principal.role == Role.customer and status != OrderStatus.cancelled:
                raise ForbiddenException("Customers can only cancel their orders")
            previous = order.status
            order.change_status(status)
            order = await uow.order_repository.update(order)

        logger.info(
            "order_status_updated",
            order_id=order.id,
            previous=previous.value,
            status=status.value,
            actor=principal.user_id,
        )
        actions = PostCommitActions(self._dispatcher)
        if status == OrderStatus.cancelled and previous != OrderStatus.cancelled:
            self._add_redemption_release(actions, order)
        self._add_publish(actions, OrderEventType.STATUS_UPDATED, order)
        await actions.run(order_id=order.id)
        return order

    async def delete_order(self, principal: Principal, order_id: str) -> None:
        if principal.role == Role.customer:
            raise ForbiddenException("Customers cannot delete orders")
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            self._ensure_visible(principal, order)
            await uow.order_repository.delete(order_id)

        logger.info("order_deleted", order_id=order_id, actor=principal.user_id)
        actions = PostCommitActions(self._dispatcher)
        self._add_redemption_release(actions, order)
        self._add_publish(actions, OrderEventType.ORDER_DELETED, order)
        await actions.run(order_id=order.id)

    def _add_redemption_release(self, actions: PostCommitActions, order: Order) -> None:
        """未支付订单被取消/删除时退回 pending 兑换"""
        if not order.uses_wallet or order.payment_status not in (PaymentStatus.pending, PaymentStatus.failed):
            return
        ledger = self._ledger
        actions.add(
            "wallet_rollback_redemption",
            lambda: ledger.rollback_redemption(order.customer_id, order.id),
            retry_task="wallet.rollback_redemption",
            retry_kwargs={"user_id": order.customer_id, "order_id": order.id},
        )

    def _add_publish(self, actions: PostCommitActions, event_type: OrderEventType, order: Order) -> None:
        if self._publisher is None:
            return
        event = OrderEvent(
            event=event_type,
            order_id=order.id,
            data=OrderResponseDTO.from_entity(order).to_payload(),
        )
        actions.add("publish_" + event_type.value, lambda: self._publisher.publish(event))
