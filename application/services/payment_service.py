"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.

Refund reconciliation lives here as well: a refund is split between the
wallet (the share originally paid with wallet credits) and the gateway, the
wallet leg first since it is local and idempotent.
"""
from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple

from application.dtos.orders import OrderResponseDTO
from application.dtos.payments import (
    CreateGatewayOrder,
    GatewayRefund,
    GatewayRefundRequest,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentDetails,
    RefundOutcome,
    RefundPaymentRequest,
    VerifyPaymentRequest,
)
from application.ports.event_publisher import OrderEventPublisher
from application.ports.payment_gateway import PaymentGateway
from application.ports.task_dispatcher import TaskDispatcherPort
from application.ports.webhook_deduplicator import WebhookDeduplicator
from application.services.post_commit import PostCommitActions
from application.services.wallet_service import WalletLedgerService
from core.logging_config import get_logger
from core.settings import normalize_provider
from domain.common.exceptions import (
    BusinessException,
    ForbiddenException,
    OrderNotFoundException,
    OrderStateException,
    RefundExceedsRefundableException,
    RefundNotAllowedException,
)
from domain.common.money import ZERO, Money, round_money
from domain.common.principal import Principal, Role
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, PaymentStatus
from domain.order.events import OrderEvent, OrderEventType
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)

# provider failures that leave the gateway leg of a refund unsettled
_GATEWAY_FAILURE_CODES = {
    PaymentCode.PROVIDER_ERROR,
    PaymentCode.PROVIDER_RECOVERABLE,
    PaymentCode.TIMEOUT,
    PaymentCode.RATE_LIMITED,
}


def _idempotency_key(*parts: Any) -> str:
    # Stable, reproducible key derived from business identifiers (no timestamp)
    base = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        ledger: WalletLedgerService,
        *,
        gateway_resolver: Optional[Callable[[str], PaymentGateway]] = None,
        publisher: Optional[OrderEventPublisher] = None,
        dispatcher: Optional[TaskDispatcherPort] = None,
        deduplicator: Optional[WebhookDeduplicator] = None,
        webhook_dedupe_ttl: int = 86400,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._ledger = ledger
        self._gateway_resolver = gateway_resolver
        self._publisher = publisher
        self._dispatcher = dispatcher
        self._deduplicator = deduplicator
        self._webhook_dedupe_ttl = webhook_dedupe_ttl
        self._webhook_gateways: dict[str, PaymentGateway] = {}

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _load_order(self, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    @staticmethod
    def _ensure_visible(principal: Principal, order: Order) -> None:
        if principal.role == Role.customer and order.customer_id != principal.user_id:
            raise ForbiddenException("You can only access your own orders")
        if principal.role == Role.manager and order.tenant_id != principal.tenant_id:
            raise ForbiddenException("You can only access orders of your tenant")

    def _event(self, event_type: OrderEventType, order: Order) -> OrderEvent:
        return OrderEvent(
            event=event_type,
            order_id=order.id,
            data=OrderResponseDTO.from_entity(order).to_payload(),
        )

    def _add_rollback(self, actions: PostCommitActions, order: Order) -> None:
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
        event = self._event(event_type, order)
        actions.add("publish_" + event_type.value, lambda: self._publisher.publish(event))

    # ------------------------------------------------------------------
    # initiate / verify
    # ------------------------------------------------------------------

    async def initiate_payment(self, principal: Principal, req: InitiatePaymentRequest) -> InitiatePaymentResponse:
        order = await self._load_order(req.order_id)
        self._ensure_visible(principal, order)
        if order.payment_status == PaymentStatus.paid:
            raise OrderStateException("Order is already paid", details={"order_id": order.id})
        if order.payment_status == PaymentStatus.refunded:
            raise OrderStateException("Order has been refunded", details={"order_id": order.id})
        if order.final_total <= 0:
            raise OrderStateException("Order has nothing to pay", details={"order_id": order.id})
        if order.uses_wallet:
            # 钱包份额先扣减：下单时扣减失败或已回滚的在此补扣，余额不足直接拒绝
            await self._ledger.redeem_credits(order.customer_id, order.wallet_credits_applied, order.id)

        amount_minor = Money(order.final_total, req.currency).to_minor()
        create = CreateGatewayOrder(
            order_id=order.id,
            amount_minor=amount_minor,
            currency=req.currency,
            idempotency_key=_idempotency_key(
                "create", order.id, amount_minor, req.currency, self.gateway.provider
            ),
            description=f"Order {order.id}",
            metadata={"order_id": order.id, "tenant_id": order.tenant_id, "customer_id": order.customer_id},
        )
        logger.info(
            "payment_create_request",
            order_id=order.id,
            provider=self.gateway.provider,
            amount_minor=amount_minor,
            idempotency_key=create.idempotency_key,
        )
        gateway_order = await self.gateway.create_order(create)

        async with self._uow_factory() as uow:
            current = await uow.order_repository.get_by_id(order.id)
            if current is None:
                raise OrderNotFoundException(order.id)
            current.gateway_order_id = gateway_order.gateway_order_id
            await uow.order_repository.update(current)

        logger.info(
            "payment_create_response",
            order_id=order.id,
            provider=gateway_order.provider,
            gateway_order_id=gateway_order.gateway_order_id,
            status=gateway_order.status,
        )
        return InitiatePaymentResponse(
            order_id=order.id,
            gateway_order_id=gateway_order.gateway_order_id,
            provider=gateway_order.provider,
            amount=order.final_total,
            amount_minor=gateway_order.amount_minor,
            currency=gateway_order.currency,
            status=gateway_order.status,
            payment_url=gateway_order.payment_url,
        )

    async def verify_payment(self, principal: Principal, req: VerifyPaymentRequest) -> Tuple[Order, bool]:
        order = await self._load_order(req.order_id)
        self._ensure_visible(principal, order)
        if order.payment_status == PaymentStatus.paid:
            return order, True

        gateway_order_id = req.gateway_order_id or order.gateway_order_id
        if not gateway_order_id:
            raise OrderStateException("Payment was not initiated for this order", details={"order_id": order.id})

        verified = await self.gateway.verify_payment(gateway_order_id, req.payment_id, req.signature)
        logger.info(
            "payment_verify_result",
            order_id=order.id,
            provider=self.gateway.provider,
            payment_id=req.payment_id,
            verified=verified,
        )
        if verified:
            order = await self.settle_success(order.id, req.payment_id)
        else:
            order = await self.settle_failure(order.id)
        return order, verified

    async def _collect_wallet_share(self, order: Order, payment_id: Optional[str]) -> bool:
        """确保订单的钱包份额已扣减（幂等）；余额不足或钱包冻结时返回 False"""
        try:
            await self._ledger.redeem_credits(order.customer_id, order.wallet_credits_applied, order.id)
        except BusinessException as exc:
            logger.error(
                "payment_wallet_share_uncollected",
                order_id=order.id,
                payment_id=payment_id,
                amount=str(order.wallet_credits_applied),
                error=exc.message,
            )
            return False
        return True

    async def settle_success(self, order_id: str, payment_id: Optional[str]) -> Order:
        """网关确认支付成功：订单置为 paid，完成钱包兑换并返现

        钱包份额未能扣减时订单不会置为 paid，而是按支付失败处理（网关款项需人工退回）。
        """
        order = await self._load_order(order_id)
        if order.payment_status in (PaymentStatus.paid, PaymentStatus.refunded):
            logger.info("payment_success_already_applied", order_id=order_id, status=order.payment_status.value)
            return order
        if order.uses_wallet and not await self._collect_wallet_share(order, payment_id):
            return await self.settle_failure(order_id)

        async with self._uow_factory() as uow:
            updated = await uow.order_repository.update_payment_status(
                order_id,
                PaymentStatus.paid,
                expected=(PaymentStatus.pending, PaymentStatus.failed),
                payment_id=payment_id,
            )
            if updated is None:
                current = await uow.order_repository.get_by_id(order_id)
        if updated is None:
            # 已处理过（重复回调或 verify 与 webhook 竞争）
            if current is None:
                raise OrderNotFoundException(order_id)
            logger.info("payment_success_already_applied", order_id=order_id, status=current.payment_status.value)
            return current

        logger.info("payment_completed", order_id=order_id, payment_id=payment_id)
        order = updated
        ledger = self._ledger
        actions = PostCommitActions(self._dispatcher)
        if order.uses_wallet:
            actions.add(
                "wallet_complete_redemption",
                lambda: ledger.complete_redemption(order.id),
                retry_task="wallet.complete_redemption",
                retry_kwargs={"order_id": order.id},
            )
        actions.add(
            "wallet_cashback",
            lambda: ledger.add_cashback(order.customer_id, order.id, order.total, order.wallet_credits_applied),
            retry_task="wallet.add_cashback",
            retry_kwargs={
                "user_id": order.customer_id,
                "order_id": order.id,
                "order_amount": str(order.total),
                "wallet_amount_used": str(order.wallet_credits_applied),
            },
        )
        self._add_publish(actions, OrderEventType.PAYMENT_COMPLETED, order)
        await actions.run(order_id=order.id)
        return order

    async def settle_failure(self, order_id: str) -> Order:
        """支付失败：订单置为 failed，退回 pending 的钱包兑换"""
        async with self._uow_factory() as uow:
            updated = await uow.order_repository.update_payment_status(
                order_id, PaymentStatus.failed, expected=(PaymentStatus.pending,)
            )
            if updated is None:
                current = await uow.order_repository.get_by_id(order_id)
        if updated is None:
            if current is None:
                raise OrderNotFoundException(order_id)
            logger.info("payment_failure_ignored", order_id=order_id, status=current.payment_status.value)
            if current.payment_status == PaymentStatus.failed and current.uses_wallet:
                # 失败后重新发起支付时补扣的份额，再次失败同样退回
                actions = PostCommitActions(self._dispatcher)
                self._add_rollback(actions, current)
                await actions.run(order_id=order_id)
            return current

        logger.info("payment_failed", order_id=order_id)
        order = updated
        actions = PostCommitActions(self._dispatcher)
        if order.uses_wallet:
            self._add_rollback(actions, order)
        self._add_publish(actions, OrderEventType.PAYMENT_FAILED, order)
        await actions.run(order_id=order.id)
        return order

    # ------------------------------------------------------------------
    # refund reconciliation
    # ------------------------------------------------------------------

    @staticmethod
    def split_refund(order: Order, amount: Decimal) -> Tuple[Decimal, Decimal]:
        """(wallet share, gateway share) of a refund amount

        Each share is capped by what its source can still give back; the
        excess moves to the other leg.
        """
        amount = round_money(amount)
        if order.final_total == 0:
            wallet = amount
        elif order.wallet_credits_applied > 0 and order.total > 0:
            wallet = round_money(amount * order.wallet_credits_applied / order.total)
        else:
            wallet = ZERO
        wallet = min(wallet, order.wallet_refundable)
        gateway = round_money(amount - wallet)
        if gateway > order.gateway_refundable:
            wallet = round_money(wallet + gateway - order.gateway_refundable)
            gateway = order.gateway_refundable
        return wallet, gateway

    async def _reserve_refund(self, order: Order, amount: Decimal) -> Order:
        async with self._uow_factory() as uow:
            reserved = await uow.order_repository.reserve_refund(order.id, amount)
            if reserved is None:
                current = await uow.order_repository.get_by_id(order.id)
        if reserved is not None:
            return reserved
        # 并发退款先占用了额度，或订单状态已变化
        if current is None:
            raise OrderNotFoundException(order.id)
        if current.payment_status != PaymentStatus.paid:
            raise RefundNotAllowedException(
                "Only paid orders can be refunded",
                details={"order_id": current.id, "payment_status": current.payment_status.value},
            )
        raise RefundExceedsRefundableException(requested=amount, refundable=current.refundable_amount)

    async def refund(self, principal: Principal, req: RefundPaymentRequest) -> RefundOutcome:
        if principal.role == Role.customer:
            raise ForbiddenException("Customers cannot issue refunds")
        order = await self._load_order(req.order_id)
        self._ensure_visible(principal, order)

        if order.payment_status != PaymentStatus.paid:
            raise RefundNotAllowedException(
                "Only paid orders can be refunded",
                details={"order_id": order.id, "payment_status": order.payment_status.value},
            )
        refundable = order.refundable_amount
        if refundable <= 0:
            raise RefundNotAllowedException("Order has been fully refunded", details={"order_id": order.id})
        amount = round_money(req.amount) if req.amount is not None else refundable
        if amount > refundable:
            raise RefundExceedsRefundableException(requested=amount, refundable=refundable)

        order = await self._reserve_refund(order, amount)
        # 本次退款在累计额度中的起点，区分同一订单上金额相同的多次退款
        offset = round_money(order.refund_details.total_refunded + order.refund_details.reserved - amount)
        wallet_share, gateway_share = self.split_refund(order, amount)
        logger.info(
            "refund_requested",
            order_id=order.id,
            amount=str(amount),
            wallet_share=str(wallet_share),
            gateway_share=str(gateway_share),
            actor=principal.user_id,
        )

        wallet_refunded = ZERO
        gateway_refunded = ZERO
        gateway_status = "not_required" if gateway_share == 0 else "pending"
        gateway_refund_id: Optional[str] = None
        try:
            # wallet leg
            if wallet_share > 0:
                await self._ledger.refund_to_wallet(
                    order.customer_id, wallet_share, order.id, reference=f"after-{offset}"
                )
                wallet_refunded = wallet_share

            # gateway leg
            if gateway_share > 0 and not order.payment_id:
                gateway_status = "skipped"
                logger.warning("gateway_refund_skipped_no_payment_id", order_id=order.id, amount=str(gateway_share))
            elif gateway_share > 0:
                amount_minor = Money(gateway_share).to_minor()
                request = GatewayRefundRequest(
                    payment_id=order.payment_id,
                    amount_minor=amount_minor,
                    idempotency_key=_idempotency_key(
                        "refund", order.id, order.payment_id, amount_minor, offset, self.gateway.provider
                    ),
                    reason=req.reason,
                    notes={"order_id": order.id},
                )
                try:
                    result = await self.gateway.refund(request)
                    gateway_status = "succeeded"
                    gateway_refund_id = result.id
                    gateway_refunded = gateway_share
                except BusinessException as exc:
                    if exc.code not in _GATEWAY_FAILURE_CODES:
                        raise
                    gateway_status = "failed"
                    logger.error(
                        "gateway_refund_failed",
                        order_id=order.id,
                        payment_id=order.payment_id,
                        amount=str(gateway_share),
                        error=exc.message,
                    )
        finally:
            # 释放预留额度，只累加成功的退款腿
            async with self._uow_factory() as uow:
                order = await uow.order_repository.apply_refund(
                    order.id,
                    reserved=amount,
                    wallet_amount=wallet_refunded,
                    gateway_amount=gateway_refunded,
                )
                complete = order.refund_details.total_refunded >= order.total
                if complete and gateway_status in ("not_required", "succeeded"):
                    updated = await uow.order_repository.update_payment_status(
                        order.id, PaymentStatus.refunded, expected=(PaymentStatus.paid,)
                    )
                    if updated is not None:
                        order = updated

        if wallet_refunded + gateway_refunded > 0:
            actions = PostCommitActions()
            self._add_publish(actions, OrderEventType.PAYMENT_REFUNDED, order)
            await actions.run(order_id=order.id)

        fully_refunded = order.payment_status == PaymentStatus.refunded
        logger.info(
            "refund_processed",
            order_id=order.id,
            wallet_refund=str(wallet_refunded),
            gateway_refund=str(gateway_refunded),
            gateway_refund_status=gateway_status,
            fully_refunded=fully_refunded,
        )
        return RefundOutcome(
            order_id=order.id,
            refund_amount=amount,
            wallet_refund=wallet_share,
            gateway_refund=gateway_share,
            gateway_refund_status=gateway_status,
            gateway_refund_id=gateway_refund_id,
            payment_status=order.payment_status.value,
            total_refunded=order.refund_details.total_refunded,
            remaining_refundable=order.refundable_amount,
            fully_refunded=fully_refunded,
        )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def _paid_order(self, principal: Principal, order_id: str) -> Order:
        order = await self._load_order(order_id)
        self._ensure_visible(principal, order)
        if not order.payment_id:
            raise OrderStateException("Order has no gateway payment", details={"order_id": order.id})
        return order

    async def get_payment_details(self, principal: Principal, order_id: str) -> PaymentDetails:
        order = await self._paid_order(principal, order_id)
        return await self.gateway.get_payment_details(order.payment_id)

    async def get_refunds(self, principal: Principal, order_id: str) -> list[GatewayRefund]:
        order = await self._paid_order(principal, order_id)
        return await self.gateway.get_refunds(order.payment_id)

    # ------------------------------------------------------------------
    # webhooks
    # ------------------------------------------------------------------

    def _webhook_gateway(self, provider: str) -> PaymentGateway:
        if provider == self.gateway.provider:
            return self.gateway
        if provider in self._webhook_gateways:
            return self._webhook_gateways[provider]
        if self._gateway_resolver is None:
            raise OrderStateException(f"Webhooks for {provider} are not configured")
        try:
            gateway = self._gateway_resolver(provider)
        except RuntimeError as exc:
            # 另一网关缺少密钥
            raise OrderStateException(f"Webhooks for {provider} are not configured") from exc
        self._webhook_gateways[provider] = gateway
        return gateway

    async def handle_webhook(self, provider: str, headers: dict, body: bytes) -> dict[str, Any]:
        gateway = self._webhook_gateway(normalize_provider(provider))

        event = gateway.parse_webhook(headers, body)
        logger.info("payment_webhook_parsed", provider=gateway.provider, event_type=event.type, event_id=event.id)

        if self._deduplicator is not None:
            first = await self._deduplicator.first_seen(
                f"webhook:{gateway.provider}:{event.id}", self._webhook_dedupe_ttl
            )
            if not first:
                logger.info("payment_webhook_duplicate", provider=gateway.provider, event_id=event.id)
                return {"event_id": event.id, "handled": False, "duplicate": True}

        status = event.data.get("status")
        if status not in ("paid", "failed"):
            logger.info("payment_webhook_ignored", provider=gateway.provider, event_type=event.type, status=status)
            return {"event_id": event.id, "handled": False, "duplicate": False}

        order = await self._order_for_event(event.data)
        if order is None:
            logger.warning(
                "payment_webhook_order_not_found",
                provider=gateway.provider,
                event_id=event.id,
                gateway_order_id=event.data.get("gateway_order_id"),
            )
            return {"event_id": event.id, "handled": False, "duplicate": False}

        if status == "paid":
            order = await self.settle_success(order.id, event.data.get("payment_id"))
        else:
            order = await self.settle_failure(order.id)
        return {
            "event_id": event.id,
            "handled": True,
            "duplicate": False,
            "order_id": order.id,
            "payment_status": order.payment_status.value,
        }

    async def _order_for_event(self, data: dict) -> Optional[Order]:
        async with self._uow_factory(readonly=True) as uow:
            order = None
            if data.get("gateway_order_id"):
                order = await uow.order_repository.get_by_gateway_order_id(data["gateway_order_id"])
            if order is None and data.get("order_id"):
                order = await uow.order_repository.get_by_id(data["order_id"])
        return order

    async def aclose(self) -> None:
        for gateway in (self.gateway, *self._webhook_gateways.values()):
            close = getattr(gateway, "aclose", None)
            if callable(close):
                await close()
