import asyncio
from decimal import Decimal

import pytest

from application.services.wallet_service import WalletLedgerService
from domain.common.exceptions import (
    DomainValidationException,
    DuplicateWalletTransactionException,
    InsufficientWalletBalanceException,
    WalletUpdateFailedException,
)
from domain.wallet.cashback import CashbackPolicy
from domain.wallet.entity import TransactionStatus, TransactionType, WalletTransaction

from conftest import fund_wallet


USER = "cust-1"
_REJECTIONS = (InsufficientWalletBalanceException, WalletUpdateFailedException)


async def _balance(ledger: WalletLedgerService, user_id: str = USER) -> Decimal:
    return (await ledger.get_balance(user_id)).balance


async def _entries(ledger: WalletLedgerService, user_id: str = USER):
    items, _ = await ledger.get_transactions(user_id, page=1, limit=100)
    return items


@pytest.mark.asyncio
async def test_wallet_is_created_on_first_access(ledger):
    wallet = await ledger.get_or_create_wallet(USER)
    again = await ledger.get_or_create_wallet(USER)

    assert wallet.id == again.id
    assert wallet.balance == Decimal("0")
    assert wallet.currency == "INR"


@pytest.mark.asyncio
async def test_concurrent_redemptions_only_one_succeeds(ledger):
    await fund_wallet(ledger, USER, "100")

    results = await asyncio.gather(
        ledger.redeem_credits(USER, Decimal("80"), "order-a"),
        ledger.redeem_credits(USER, Decimal("80"), "order-b"),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], _REJECTIONS)
    assert await _balance(ledger) == Decimal("20.00")


@pytest.mark.asyncio
async def test_balance_never_goes_negative_under_contention(ledger):
    await fund_wallet(ledger, USER, "100")

    results = await asyncio.gather(
        *(ledger.redeem_credits(USER, Decimal("30"), f"order-{i}") for i in range(5)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    assert all(isinstance(r, _REJECTIONS) for r in results if isinstance(r, Exception))
    assert len(succeeded) == 3
    assert await _balance(ledger) == Decimal("10.00")

    entries = await _entries(ledger)
    debits = sum(-e.amount for e in entries if e.amount < 0)
    credits = sum(e.amount for e in entries if e.amount > 0)
    assert debits <= credits


@pytest.mark.asyncio
async def test_redeem_records_pending_debit(ledger):
    await fund_wallet(ledger, USER, "100")

    tx = await ledger.redeem_credits(USER, Decimal("40"), "order-1")

    assert tx.type == TransactionType.redemption
    assert tx.status == TransactionStatus.pending
    assert tx.amount == Decimal("-40.00")
    assert tx.balance_before == Decimal("100.00")
    assert tx.balance_after == Decimal("60.00")


@pytest.mark.asyncio
async def test_redeem_more_than_balance_is_rejected(ledger):
    await fund_wallet(ledger, USER, "50")

    with pytest.raises(InsufficientWalletBalanceException):
        await ledger.redeem_credits(USER, Decimal("80"), "order-1")

    assert await _balance(ledger) == Decimal("50.00")


@pytest.mark.asyncio
async def test_redeem_requires_positive_amount(ledger):
    with pytest.raises(DomainValidationException):
        await ledger.redeem_credits(USER, Decimal("0"), "order-1")


@pytest.mark.asyncio
async def test_ledger_operations_are_idempotent_per_order(ledger):
    await fund_wallet(ledger, USER, "100")

    r1 = await ledger.redeem_credits(USER, Decimal("40"), "order-1")
    r2 = await ledger.redeem_credits(USER, Decimal("40"), "order-1")
    c1 = await ledger.add_cashback(USER, "order-2", Decimal("1000"))
    c2 = await ledger.add_cashback(USER, "order-2", Decimal("1000"))
    f1 = await ledger.refund_to_wallet(USER, Decimal("25"), "order-3")
    f2 = await ledger.refund_to_wallet(USER, Decimal("25"), "order-3")

    assert r1.id == r2.id
    assert c1.id == c2.id
    assert f1.id == f2.id
    # 100 - 40 + 50 + 25
    assert await _balance(ledger) == Decimal("135.00")
    assert len(await _entries(ledger)) == 4


@pytest.mark.asyncio
async def test_distinct_partial_refunds_both_credit(ledger):
    await ledger.refund_to_wallet(USER, Decimal("10"), "order-1")
    await ledger.refund_to_wallet(USER, Decimal("15"), "order-1")

    assert await _balance(ledger) == Decimal("25.00")


@pytest.mark.asyncio
async def test_equal_partial_refunds_need_distinct_references(ledger):
    first = await ledger.refund_to_wallet(USER, Decimal("50"), "order-1", reference="after-0.00")
    replay = await ledger.refund_to_wallet(USER, Decimal("50"), "order-1", reference="after-0.00")
    second = await ledger.refund_to_wallet(USER, Decimal("50"), "order-1", reference="after-150.00")

    assert replay.id == first.id
    assert second.id != first.id
    assert await _balance(ledger) == Decimal("100.00")


@pytest.mark.asyncio
async def test_complete_redemption_marks_entry_completed(ledger):
    await fund_wallet(ledger, USER, "100")
    await ledger.redeem_credits(USER, Decimal("40"), "order-1")

    tx = await ledger.complete_redemption("order-1")

    assert tx.status == TransactionStatus.completed
    assert await ledger.complete_redemption("order-1") is None
    assert await _balance(ledger) == Decimal("60.00")


@pytest.mark.asyncio
async def test_rollback_restores_balance_once(ledger):
    await fund_wallet(ledger, USER, "100")
    await ledger.redeem_credits(USER, Decimal("40"), "order-1")

    rolled = await ledger.rollback_redemption(USER, "order-1")
    again = await ledger.rollback_redemption(USER, "order-1")

    assert rolled.status == TransactionStatus.rolled_back
    assert again is None
    assert await _balance(ledger) == Decimal("100.00")


@pytest.mark.asyncio
async def test_concurrent_rollbacks_credit_once(ledger):
    await fund_wallet(ledger, USER, "100")
    await ledger.redeem_credits(USER, Decimal("40"), "order-1")

    results = await asyncio.gather(
        ledger.rollback_redemption(USER, "order-1"),
        ledger.rollback_redemption(USER, "order-1"),
    )

    assert len([r for r in results if r is not None]) == 1
    assert await _balance(ledger) == Decimal("100.00")


@pytest.mark.asyncio
async def test_complete_and_rollback_race_settles_one_way(ledger):
    await fund_wallet(ledger, USER, "100")
    await ledger.redeem_credits(USER, Decimal("40"), "order-1")

    completed, rolled = await asyncio.gather(
        ledger.complete_redemption("order-1"),
        ledger.rollback_redemption(USER, "order-1"),
    )

    assert (completed is None) != (rolled is None)
    redemption = next(e for e in await _entries(ledger) if e.type == TransactionType.redemption)
    if rolled is not None:
        assert redemption.status == TransactionStatus.rolled_back
        assert await _balance(ledger) == Decimal("100.00")
    else:
        assert redemption.status == TransactionStatus.completed
        assert await _balance(ledger) == Decimal("60.00")


@pytest.mark.asyncio
async def test_duplicate_entry_discards_the_whole_unit_of_work(ledger, uow_factory):
    await fund_wallet(ledger, USER, "100")
    seed = (await _entries(ledger))[0]

    with pytest.raises(DuplicateWalletTransactionException):
        async with uow_factory() as uow:
            wallet = await uow.wallet_repository.increment_balance(USER, Decimal("50"), require_active=False)
            await uow.wallet_transaction_repository.create(
                WalletTransaction(
                    id=None,
                    wallet_id=wallet.id,
                    user_id=USER,
                    type=TransactionType.refund,
                    amount=Decimal("50"),
                    order_id=seed.order_id,
                    balance_before=Decimal("100"),
                    balance_after=wallet.balance,
                    status=TransactionStatus.completed,
                    idempotency_key=seed.idempotency_key,
                )
            )

    assert await _balance(ledger) == Decimal("100.00")
    assert len(await _entries(ledger)) == 1


@pytest.mark.asyncio
async def test_order_can_redeem_again_after_rollback(ledger):
    await fund_wallet(ledger, USER, "100")
    first = await ledger.redeem_credits(USER, Decimal("40"), "order-1")
    await ledger.rollback_redemption(USER, "order-1")

    second = await ledger.redeem_credits(USER, Decimal("40"), "order-1")

    assert second.id != first.id
    assert second.status == TransactionStatus.pending
    assert await _balance(ledger) == Decimal("60.00")


@pytest.mark.asyncio
async def test_cashback_rules(ledger):
    below_minimum = await ledger.add_cashback(USER, "order-1", Decimal("99.99"))
    capped = await ledger.add_cashback(USER, "order-2", Decimal("5000"))
    wallet_share_excluded = await ledger.add_cashback(USER, "order-3", Decimal("1000"), Decimal("200"))
    fully_wallet_paid = await ledger.add_cashback(USER, "order-4", Decimal("1000"), Decimal("1000"))

    assert below_minimum is None
    assert capped.amount == Decimal("100.00")
    assert wallet_share_excluded.amount == Decimal("40.00")
    assert fully_wallet_paid is None
    assert await _balance(ledger) == Decimal("140.00")


@pytest.mark.asyncio
async def test_cashback_disabled(uow_factory):
    ledger = WalletLedgerService(uow_factory, CashbackPolicy(enabled=False))

    assert await ledger.add_cashback(USER, "order-1", Decimal("1000")) is None
    assert ledger.calculate_cashback(Decimal("1000")) == Decimal("0")


def test_calculate_cashback_preview():
    ledger = WalletLedgerService(None, CashbackPolicy())

    assert ledger.calculate_cashback(Decimal("1000"), Decimal("200")) == Decimal("40.00")
    assert ledger.calculate_cashback(Decimal("3000")) == Decimal("100.00")
    assert ledger.calculate_cashback(Decimal("50")) == Decimal("0")


@pytest.mark.asyncio
async def test_settle_full_payment(ledger):
    await fund_wallet(ledger, USER, "1000")

    cashback = await ledger.settle_full_payment(USER, "order-1", Decimal("1000"), Decimal("1000"))

    assert cashback is None
    entries = await _entries(ledger)
    redemption = next(e for e in entries if e.type == TransactionType.redemption)
    assert redemption.status == TransactionStatus.completed
    assert await _balance(ledger) == Decimal("0.00")


@pytest.mark.asyncio
async def test_transactions_are_paginated(ledger):
    for i in range(3):
        await ledger.refund_to_wallet(USER, Decimal("10"), f"order-{i}")

    page1, total = await ledger.get_transactions(USER, page=1, limit=2)
    page2, _ = await ledger.get_transactions(USER, page=2, limit=2)

    assert total == 3
    assert len(page1) == 2
    assert len(page2) == 1
