from decimal import Decimal

import pytest

from application.dtos.orders import CreateOrderDTO
from domain.common.exceptions import (
    CouponExpiredException,
    CouponNotFoundException,
    ForbiddenException,
    OrderNotFoundException,
    PriceValidationException,
    TenantRequiredException,
)
from domain.idempotency.entity import IdempotencyContext
from domain.order.entity import OrderStatus, PaymentMode, PaymentStatus
from domain.wallet.entity import TransactionStatus, TransactionType

from conftest import TENANT, add_coupon, fund_wallet, item


def _dto(items, total, **extra) -> CreateOrderDTO:
    return CreateOrderDTO(tenant_id=extra.pop("tenant_id", TENANT), items=items, total=Decimal(str(total)), **extra)


async def _wallet_entries(ledger, user_id="cust-1"):
    items, _ = await ledger.get_transactions(user_id, page=1, limit=50)
    return items


@pytest.mark.asyncio
async def test_full_wallet_payment_settles_immediately(order_service, ledger, publisher, customer):
    await fund_wallet(ledger, customer.user_id, "1000")

    result = await order_service.create_order(
        customer,
        _dto([item("biryani", qty=2)], 1000, wallet_credits_applied=Decimal("1000")),
    )

    order = result.order
    assert order.total == Decimal("1000.00")
    assert order.final_total == Decimal("0.00")
    assert order.payment_mode == PaymentMode.wallet
    assert order.payment_status == PaymentStatus.paid
    assert result.post_commit.failed == []

    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("0.00")
    entries = await _wallet_entries(ledger)
    redemption = next(e for e in entries if e.type == TransactionType.redemption)
    assert redemption.status == TransactionStatus.completed
    assert redemption.amount == Decimal("-1000.00")
    # fully wallet-paid orders earn no cashback
    assert not [e for e in entries if e.type == TransactionType.cashback]
    assert publisher.types == ["order-payment-completed"]


@pytest.mark.asyncio
async def test_partial_wallet_payment_leaves_pending_redemption(order_service, ledger, publisher, customer):
    await fund_wallet(ledger, customer.user_id, "100")

    result = await order_service.create_order(
        customer,
        _dto([item("pizza", qty=2)], 400, wallet_credits_applied=Decimal("100")),
    )

    order = result.order
    assert order.final_total == Decimal("300.00")
    assert order.payment_status == PaymentStatus.pending
    assert order.payment_mode == PaymentMode.card
    assert result.post_commit.succeeded == ["wallet_redeem", "publish_order-created"]

    entries = await _wallet_entries(ledger)
    redemption = next(e for e in entries if e.type == TransactionType.redemption)
    assert redemption.status == TransactionStatus.pending
    assert redemption.order_id == order.id
    assert publisher.types == ["order-created"]
    assert publisher.events[0].data["id"] == order.id


@pytest.mark.asyncio
async def test_insufficient_balance_is_logged_not_retried(order_service, dispatcher, customer):
    result = await order_service.create_order(
        customer,
        _dto([item("pizza")], 200, wallet_credits_applied=Decimal("50")),
    )

    # order already committed; the failed step never reaches the caller
    assert result.status_code == 201
    assert result.post_commit.failed == ["wallet_redeem"]
    assert dispatcher.calls == []
    stored = await order_service.get_order(customer, result.order.id)
    assert stored.final_total == Decimal("150.00")


@pytest.mark.asyncio
async def test_transient_wallet_failure_is_handed_to_retry_task(
    order_service, ledger, dispatcher, customer, monkeypatch
):
    async def boom(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(ledger, "redeem_credits", boom)

    result = await order_service.create_order(
        customer,
        _dto([item("pizza")], 200, wallet_credits_applied=Decimal("50")),
    )

    assert result.post_commit.failed == ["wallet_redeem"]
    assert dispatcher.calls == [
        (
            "wallet.redeem_credits",
            {"user_id": "cust-1", "order_id": result.order.id, "amount": "50.00"},
        )
    ]


@pytest.mark.asyncio
async def test_price_mismatch_rejects_and_stores_nothing(order_service, customer, publisher):
    with pytest.raises(PriceValidationException) as exc_info:
        await order_service.create_order(customer, _dto([item("pizza", qty=2)], 450))

    assert exc_info.value.errors == ["Total mismatch: expected 400.00, received 450.00"]
    assert exc_info.value.details["computed"]["total"] == "400.00"
    orders, total = await order_service.list_my_orders(customer)
    assert total == 0
    assert publisher.events == []


@pytest.mark.asyncio
async def test_unknown_or_expired_coupon(order_service, tenant_config, customer):
    add_coupon(tenant_config, "OLD", "10", expired=True)

    with pytest.raises(CouponNotFoundException):
        await order_service.create_order(customer, _dto([item("pizza")], 200, coupon_code="NOPE"))
    with pytest.raises(CouponExpiredException):
        await order_service.create_order(customer, _dto([item("pizza")], 200, coupon_code="OLD"))


@pytest.mark.asyncio
async def test_coupon_is_recorded_on_order(order_service, tenant_config, customer):
    add_coupon(tenant_config, "SAVE10", "10")

    result = await order_service.create_order(
        customer, _dto([item("pizza", qty=2)], 360, coupon_code="SAVE10", discount=Decimal("40"))
    )

    assert result.order.coupon_code == "SAVE10"
    assert result.order.discount == Decimal("40.00")


@pytest.mark.asyncio
async def test_idempotency_record_is_written_with_order(order_service, idempotency, customer):
    ctx = IdempotencyContext(key="key-1", user_id=customer.user_id, endpoint="POST /api/v1/orders")

    result = await order_service.create_order(customer, _dto([item("pizza")], 200), idempotency=ctx)
    record = await idempotency.find_replay(ctx)

    assert record is not None
    assert record.status_code == 201
    assert record.response == result.response
    assert record.response["data"]["id"] == result.order.id


@pytest.mark.asyncio
async def test_failed_idempotency_write_rolls_back_order(order_service, idempotency, customer, monkeypatch):
    ctx = IdempotencyContext(key="key-2", user_id=customer.user_id, endpoint="POST /api/v1/orders")

    def broken(*args, **kwargs):
        raise RuntimeError("idempotency store unavailable")

    monkeypatch.setattr(idempotency, "build_record", broken)

    with pytest.raises(RuntimeError):
        await order_service.create_order(customer, _dto([item("pizza")], 200), idempotency=ctx)

    _, total = await order_service.list_my_orders(customer)
    assert total == 0
    assert await idempotency.find_replay(ctx) is None


@pytest.mark.asyncio
async def test_tenant_resolution(order_service, customer, manager, admin):
    managed = await order_service.create_order(manager, _dto([item("pizza")], 200, tenant_id=None))
    assert managed.order.tenant_id == TENANT

    with pytest.raises(ForbiddenException):
        await order_service.create_order(manager, _dto([item("pizza")], 200, tenant_id="t2"))
    with pytest.raises(TenantRequiredException):
        await order_service.create_order(admin, _dto([item("pizza")], 200, tenant_id=None))


@pytest.mark.asyncio
async def test_order_visibility(order_service, customer, manager):
    result = await order_service.create_order(customer, _dto([item("pizza")], 200))
    other = type(customer)(user_id="cust-2", role=customer.role)

    assert (await order_service.get_order(manager, result.order.id)).id == result.order.id
    with pytest.raises(ForbiddenException):
        await order_service.get_order(other, result.order.id)
    with pytest.raises(OrderNotFoundException):
        await order_service.get_order(customer, "missing")


@pytest.mark.asyncio
async def test_listing_is_scoped_by_role(order_service, customer, manager, admin):
    await order_service.create_order(customer, _dto([item("pizza")], 200))
    await order_service.create_order(admin, _dto([item("pizza")], 200, tenant_id="t2"))

    _, mine = await order_service.list_orders(customer)
    _, tenant_orders = await order_service.list_orders(manager)
    _, everything = await order_service.list_orders(admin)

    assert mine == 1
    assert tenant_orders == 1
    assert everything == 2


@pytest.mark.asyncio
async def test_status_update_permissions(order_service, publisher, customer, manager):
    result = await order_service.create_order(customer, _dto([item("pizza")], 200))
    order_id = result.order.id

    with pytest.raises(ForbiddenException):
        await order_service.update_status(customer, order_id, OrderStatus.delivered)

    updated = await order_service.update_status(manager, order_id, OrderStatus.preparing)
    cancelled = await order_service.update_status(customer, order_id, OrderStatus.cancelled)

    assert updated.status == OrderStatus.preparing
    assert cancelled.status == OrderStatus.cancelled
    assert publisher.types[-2:] == ["order-status-updated", "order-status-updated"]


@pytest.mark.asyncio
async def test_delete_order(order_service, publisher, customer, manager):
    result = await order_service.create_order(customer, _dto([item("pizza")], 200))

    with pytest.raises(ForbiddenException):
        await order_service.delete_order(customer, result.order.id)

    await order_service.delete_order(manager, result.order.id)

    with pytest.raises(OrderNotFoundException):
        await order_service.get_order(manager, result.order.id)
    assert publisher.types[-1] == "order-deleted"


@pytest.mark.asyncio
async def test_cancelling_unpaid_order_releases_redeemed_credits(order_service, ledger, dispatcher, customer):
    await fund_wallet(ledger, customer.user_id, "100")
    result = await order_service.create_order(
        customer,
        _dto([item("pizza")], 200, wallet_credits_applied=Decimal("100")),
    )
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("0.00")

    cancelled = await order_service.update_status(customer, result.order.id, OrderStatus.cancelled)

    assert cancelled.status == OrderStatus.cancelled
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("100.00")
    redemption = next(e for e in await _wallet_entries(ledger) if e.type == TransactionType.redemption)
    assert redemption.status == TransactionStatus.rolled_back
    assert dispatcher.calls == []

    # cancelling twice does not credit again
    await order_service.update_status(customer, result.order.id, OrderStatus.cancelled)
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_deleting_unpaid_order_releases_redeemed_credits(order_service, ledger, customer, manager):
    await fund_wallet(ledger, customer.user_id, "100")
    result = await order_service.create_order(
        customer,
        _dto([item("pizza")], 200, wallet_credits_applied=Decimal("100")),
    )

    await order_service.delete_order(manager, result.order.id)

    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_release_failure_on_cancel_is_handed_to_retry_task(
    order_service, ledger, dispatcher, customer, monkeypatch
):
    await fund_wallet(ledger, customer.user_id, "100")
    result = await order_service.create_order(
        customer,
        _dto([item("pizza")], 200, wallet_credits_applied=Decimal("100")),
    )

    async def boom(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(ledger, "rollback_redemption", boom)

    cancelled = await order_service.update_status(customer, result.order.id, OrderStatus.cancelled)

    assert cancelled.status == OrderStatus.cancelled
    assert dispatcher.calls == [
        ("wallet.rollback_redemption", {"user_id": customer.user_id, "order_id": result.order.id})
    ]
