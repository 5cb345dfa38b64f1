import asyncio
from decimal import Decimal
from types import SimpleNamespace

import pytest

from application.dtos.orders import CreateOrderDTO
from application.dtos.payments import InitiatePaymentRequest, RefundPaymentRequest, VerifyPaymentRequest
from application.services.payment_service import PaymentService
from domain.common.exceptions import (
    ForbiddenException,
    InsufficientWalletBalanceException,
    OrderStateException,
    RefundExceedsRefundableException,
    RefundNotAllowedException,
)
from domain.order.entity import Order, PaymentStatus, RefundDetails
from domain.wallet.entity import TransactionStatus, TransactionType

from conftest import TENANT, fund_wallet, item


async def _place(order_service, principal, items, total, credits="0"):
    dto = CreateOrderDTO(
        tenant_id=TENANT,
        items=items,
        total=Decimal(str(total)),
        wallet_credits_applied=Decimal(credits),
    )
    return (await order_service.create_order(principal, dto)).order


async def _paid_order(order_service, payment_service, ledger, customer, items, total, credits):
    await fund_wallet(ledger, customer.user_id, credits)
    order = await _place(order_service, customer, items, total, credits)
    await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))
    order, verified = await payment_service.verify_payment(
        customer, VerifyPaymentRequest(order_id=order.id, payment_id="pay_1", signature="sig")
    )
    assert verified
    return order


async def _entries(ledger, user_id="cust-1", tx_type=None):
    items, _ = await ledger.get_transactions(user_id, page=1, limit=50)
    return [e for e in items if tx_type is None or e.type == tx_type]


@pytest.mark.asyncio
async def test_initiate_charges_amount_after_wallet_credits(order_service, payment_service, ledger, gateway, customer):
    await fund_wallet(ledger, customer.user_id, "200")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "200")

    resp = await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))

    assert resp.amount == Decimal("800.00")
    assert resp.amount_minor == 80000
    assert resp.gateway_order_id == f"gw_{order.id}"
    assert gateway.created[0].amount_minor == 80000
    assert gateway.created[0].metadata["order_id"] == order.id
    stored = await order_service.get_order(customer, order.id)
    assert stored.gateway_order_id == f"gw_{order.id}"


@pytest.mark.asyncio
async def test_initiate_rejects_fully_wallet_paid_order(order_service, payment_service, ledger, customer):
    await fund_wallet(ledger, customer.user_id, "1000")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "1000")

    with pytest.raises(OrderStateException):
        await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))


@pytest.mark.asyncio
async def test_verified_payment_completes_redemption_and_pays_cashback(
    order_service, payment_service, ledger, publisher, customer
):
    order = await _paid_order(
        order_service, payment_service, ledger, customer, [item("biryani", qty=2)], 1000, "200"
    )

    assert order.payment_status == PaymentStatus.paid
    assert order.payment_id == "pay_1"
    redemption = (await _entries(ledger, tx_type=TransactionType.redemption))[0]
    assert redemption.status == TransactionStatus.completed
    cashback = await _entries(ledger, tx_type=TransactionType.cashback)
    assert [c.amount for c in cashback] == [Decimal("40.00")]
    assert publisher.types[-1] == "order-payment-completed"


@pytest.mark.asyncio
async def test_failed_verification_rolls_back_wallet(order_service, payment_service, ledger, gateway, publisher, customer):
    await fund_wallet(ledger, customer.user_id, "200")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "200")
    await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))
    gateway.verify_result = False

    order, verified = await payment_service.verify_payment(
        customer, VerifyPaymentRequest(order_id=order.id, payment_id="pay_1", signature="bad")
    )

    assert not verified
    assert order.payment_status == PaymentStatus.failed
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("200.00")
    redemption = (await _entries(ledger, tx_type=TransactionType.redemption))[0]
    assert redemption.status == TransactionStatus.rolled_back
    assert publisher.types[-1] == "order-payment-failed"


@pytest.mark.asyncio
async def test_repeated_settlement_pays_cashback_once(order_service, payment_service, ledger, customer):
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000)

    await payment_service.settle_success(order.id, "pay_1")
    again = await payment_service.settle_success(order.id, "pay_1")

    assert again.payment_status == PaymentStatus.paid
    assert len(await _entries(ledger, tx_type=TransactionType.cashback)) == 1


@pytest.mark.asyncio
async def test_partial_refund_is_split_between_wallet_and_gateway(
    order_service, payment_service, ledger, gateway, publisher, customer, manager
):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")

    outcome = await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id, amount=Decimal("150")))

    assert outcome.wallet_refund == Decimal("50.00")
    assert outcome.gateway_refund == Decimal("100.00")
    assert outcome.gateway_refund_status == "succeeded"
    assert gateway.refunds[0].amount_minor == 10000
    assert gateway.refunds[0].payment_id == "pay_1"
    assert outcome.payment_status == "paid"
    assert outcome.total_refunded == Decimal("150.00")
    assert outcome.remaining_refundable == Decimal("150.00")
    assert not outcome.fully_refunded
    # 100 - 100 redeemed + 10 cashback + 50 refunded
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("60.00")
    assert publisher.types[-1] == "order-payment-refunded"


@pytest.mark.asyncio
async def test_second_equal_refund_completes_the_order(order_service, payment_service, ledger, gateway, customer, manager):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")

    await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id, amount=Decimal("150")))
    outcome = await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))

    assert outcome.refund_amount == Decimal("150.00")
    assert outcome.fully_refunded
    assert outcome.payment_status == "refunded"
    assert outcome.remaining_refundable == Decimal("0.00")
    assert gateway.refunds[0].idempotency_key != gateway.refunds[1].idempotency_key
    assert len(await _entries(ledger, tx_type=TransactionType.refund)) == 3
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("110.00")

    with pytest.raises(RefundNotAllowedException):
        await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))


@pytest.mark.asyncio
async def test_refund_over_refundable_is_rejected_before_any_leg(
    order_service, payment_service, ledger, gateway, customer, manager
):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")
    balance = (await ledger.get_balance(customer.user_id)).balance

    with pytest.raises(RefundExceedsRefundableException):
        await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id, amount=Decimal("300.01")))

    assert gateway.refunds == []
    assert (await ledger.get_balance(customer.user_id)).balance == balance


@pytest.mark.asyncio
async def test_gateway_refund_failure_keeps_wallet_leg(order_service, payment_service, ledger, gateway, customer, manager):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")
    gateway.fail_refund = True

    outcome = await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))

    assert outcome.gateway_refund_status == "failed"
    assert outcome.wallet_refund == Decimal("100.00")
    assert outcome.total_refunded == Decimal("100.00")
    assert outcome.payment_status == "paid"
    assert not outcome.fully_refunded
    stored = await order_service.get_order(manager, order.id)
    assert stored.refund_details.gateway_refunded == Decimal("0.00")
    assert stored.refundable_amount == Decimal("200.00")


@pytest.mark.asyncio
async def test_full_wallet_order_refunds_to_wallet_only(order_service, ledger, payment_service, gateway, customer, admin):
    await fund_wallet(ledger, customer.user_id, "1000")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "1000")

    outcome = await payment_service.refund(admin, RefundPaymentRequest(order_id=order.id))

    assert outcome.wallet_refund == Decimal("1000.00")
    assert outcome.gateway_refund_status == "not_required"
    assert outcome.fully_refunded
    assert gateway.refunds == []
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("1000.00")


@pytest.mark.asyncio
async def test_refund_permissions_and_state(order_service, payment_service, customer, manager):
    order = await _place(order_service, customer, [item("pizza")], 200)

    with pytest.raises(ForbiddenException):
        await payment_service.refund(customer, RefundPaymentRequest(order_id=order.id))
    with pytest.raises(RefundNotAllowedException):
        await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))


def _priced(total, final_total, credits, **refunded) -> Order:
    return Order(
        id="o-split",
        tenant_id=TENANT,
        customer_id="cust-1",
        items=[],
        sub_total=Decimal(total),
        discount=Decimal("0"),
        delivery_charge=Decimal("0"),
        taxes=[],
        tax_total=Decimal("0"),
        total=Decimal(total),
        wallet_credits_applied=Decimal(credits),
        final_total=Decimal(final_total),
        refund_details=RefundDetails(**{k: Decimal(v) for k, v in refunded.items()}),
    )


def test_split_refund_shares():
    mixed = _priced("300", "200", "100")
    wallet_only = _priced("300", "0", "300")
    gateway_only = _priced("300", "300", "0")

    assert PaymentService.split_refund(mixed, Decimal("100")) == (Decimal("33.33"), Decimal("66.67"))
    assert PaymentService.split_refund(wallet_only, Decimal("120")) == (Decimal("120.00"), Decimal("0.00"))
    assert PaymentService.split_refund(gateway_only, Decimal("120")) == (Decimal("0.00"), Decimal("120.00"))


def test_split_refund_caps_each_leg_at_what_it_can_return():
    wallet_spent = _priced("300", "200", "100", wallet_refunded="100", total_refunded="100")
    gateway_spent = _priced("300", "200", "100", gateway_refunded="200", total_refunded="200")
    wallet_nearly_spent = _priced("300", "200", "100", wallet_refunded="95", total_refunded="95")

    assert PaymentService.split_refund(wallet_spent, Decimal("200")) == (Decimal("0.00"), Decimal("200.00"))
    assert PaymentService.split_refund(gateway_spent, Decimal("100")) == (Decimal("100.00"), Decimal("0.00"))
    assert PaymentService.split_refund(wallet_nearly_spent, Decimal("30")) == (Decimal("5.00"), Decimal("25.00"))


@pytest.mark.asyncio
async def test_refund_retry_after_gateway_failure_goes_to_gateway(
    order_service, payment_service, ledger, gateway, customer, manager
):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")
    gateway.fail_refund = True
    first = await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))
    gateway.fail_refund = False

    retry = await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))

    assert first.wallet_refund == Decimal("100.00")
    assert retry.refund_amount == Decimal("200.00")
    assert retry.wallet_refund == Decimal("0.00")
    assert retry.gateway_refund == Decimal("200.00")
    assert retry.gateway_refund_status == "succeeded"
    assert retry.fully_refunded
    assert gateway.refunds[-1].amount_minor == 20000
    stored = await order_service.get_order(manager, order.id)
    assert stored.refund_details.wallet_refunded == Decimal("100.00")
    assert stored.refund_details.gateway_refunded == Decimal("200.00")
    # 100 - 100 redeemed + 10 cashback + 100 refunded, nothing more credited on retry
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("110.00")


@pytest.mark.asyncio
async def test_concurrent_refunds_cannot_exceed_order_total(
    order_service, payment_service, ledger, gateway, customer, manager
):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")

    results = await asyncio.gather(
        payment_service.refund(manager, RefundPaymentRequest(order_id=order.id, amount=Decimal("200"))),
        payment_service.refund(manager, RefundPaymentRequest(order_id=order.id, amount=Decimal("200"))),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(rejected) == 1
    assert isinstance(rejected[0], RefundExceedsRefundableException)
    assert len(gateway.refunds) == 1
    stored = await order_service.get_order(manager, order.id)
    assert stored.refund_details.total_refunded == Decimal("200.00")
    assert stored.refund_details.reserved == Decimal("0.00")


@pytest.mark.asyncio
async def test_reserved_refund_amount_is_not_refundable(
    order_service, payment_service, ledger, uow_factory, customer, manager
):
    order = await _paid_order(order_service, payment_service, ledger, customer, [item("combo", qty=2)], 300, "100")
    async with uow_factory() as uow:
        assert await uow.order_repository.reserve_refund(order.id, Decimal("250")) is not None
        assert await uow.order_repository.reserve_refund(order.id, Decimal("60")) is None

    with pytest.raises(RefundExceedsRefundableException):
        await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id, amount=Decimal("100")))
    outcome = await payment_service.refund(manager, RefundPaymentRequest(order_id=order.id))

    assert outcome.refund_amount == Decimal("50.00")
    assert outcome.remaining_refundable == Decimal("0.00")
    assert not outcome.fully_refunded


@pytest.mark.asyncio
async def test_success_after_failure_redeems_wallet_share_again(order_service, payment_service, ledger, customer):
    await fund_wallet(ledger, customer.user_id, "200")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "200")
    await payment_service.settle_failure(order.id)
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("200.00")

    settled = await payment_service.settle_success(order.id, "pay_late")

    assert settled.payment_status == PaymentStatus.paid
    redemptions = await _entries(ledger, tx_type=TransactionType.redemption)
    assert len(redemptions) == 2
    assert {r.status for r in redemptions} == {TransactionStatus.rolled_back, TransactionStatus.completed}
    # 200 redeemed again, 40 cashback
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("40.00")


@pytest.mark.asyncio
async def test_success_is_not_applied_when_wallet_share_cannot_be_collected(
    order_service, payment_service, ledger, customer
):
    await fund_wallet(ledger, customer.user_id, "200")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "200")
    await payment_service.settle_failure(order.id)
    # the restored balance goes to another order
    await _place(order_service, customer, [item("biryani", qty=2)], 1000, "200")

    settled = await payment_service.settle_success(order.id, "pay_late")

    assert settled.payment_status == PaymentStatus.failed
    assert await _entries(ledger, tx_type=TransactionType.cashback) == []
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_repeated_failure_releases_share_collected_on_retry(order_service, payment_service, ledger, customer):
    await fund_wallet(ledger, customer.user_id, "200")
    order = await _place(order_service, customer, [item("biryani", qty=2)], 1000, "200")
    await payment_service.settle_failure(order.id)
    await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("0.00")

    failed = await payment_service.settle_failure(order.id)

    assert failed.payment_status == PaymentStatus.failed
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("200.00")


@pytest.mark.asyncio
async def test_initiate_collects_wallet_share_missed_at_checkout(
    order_service, payment_service, ledger, gateway, customer
):
    # empty wallet at checkout: the order is stored, the redemption step fails
    order = await _place(order_service, customer, [item("pizza")], 200, "50")

    with pytest.raises(InsufficientWalletBalanceException):
        await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))
    assert gateway.created == []

    await fund_wallet(ledger, customer.user_id, "50")
    resp = await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))

    assert resp.amount == Decimal("150.00")
    redemption = (await _entries(ledger, tx_type=TransactionType.redemption))[0]
    assert redemption.status == TransactionStatus.pending
    assert redemption.order_id == order.id
    assert (await ledger.get_balance(customer.user_id)).balance == Decimal("0.00")



@pytest.mark.asyncio
async def test_webhook_settles_order_once(order_service, payment_service, gateway, customer):
    order = await _place(order_service, customer, [item("pizza")], 200)
    await payment_service.initiate_payment(customer, InitiatePaymentRequest(order_id=order.id))
    gateway.webhook_data = {"status": "paid", "gateway_order_id": f"gw_{order.id}", "payment_id": "pay_w"}

    first = await payment_service.handle_webhook("stub", {}, b"{}")
    second = await payment_service.handle_webhook("stub", {}, b"{}")

    assert first["handled"] and first["payment_status"] == "paid"
    assert second["duplicate"]
    stored = await order_service.get_order(customer, order.id)
    assert stored.payment_id == "pay_w"


@pytest.mark.asyncio
async def test_webhook_without_terminal_status_is_ignored(payment_service, gateway):
    gateway.webhook_data = {"status": "pending", "gateway_order_id": "gw_x"}

    result = await payment_service.handle_webhook("stub", {}, b"{}")

    assert result == {"event_id": "evt_1", "handled": False, "duplicate": False}


@pytest.mark.asyncio
async def test_webhook_for_unconfigured_provider(payment_service):
    with pytest.raises(OrderStateException):
        await payment_service.handle_webhook("stripe", {}, b"{}")


@pytest.mark.asyncio
async def test_webhook_gateway_is_resolved_once_per_provider(uow_factory, gateway, ledger):
    resolved = []

    def resolver(name):
        if name == "stripe":
            raise RuntimeError("PAYMENT__STRIPE__SECRET_KEY not configured")
        resolved.append(name)
        return gateway

    service = PaymentService(uow_factory, SimpleNamespace(provider="razorpay"), ledger, gateway_resolver=resolver)
    gateway.webhook_data = {"status": "pending"}

    await service.handle_webhook("Stub", {}, b"{}")
    await service.handle_webhook("stub", {}, b"{}")

    assert resolved == ["stub"]
    with pytest.raises(OrderStateException):
        await service.handle_webhook("stripe", {}, b"{}")
