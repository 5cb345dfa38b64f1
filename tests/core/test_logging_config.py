from decimal import Decimal

from structlog.contextvars import get_contextvars

from core.logging_config import _money_as_string, order_log_context


def test_decimal_amounts_are_logged_as_strings():
    event = _money_as_string(None, "info", {"event": "refund_requested", "amount": Decimal("150.00"), "n": 2})

    assert event["amount"] == "150.00"
    assert event["n"] == 2


def test_order_log_context_binds_and_clears():
    with order_log_context("o-1", tenant_id="t1", task_id=None):
        bound = get_contextvars()
        assert bound["order_id"] == "o-1"
        assert bound["tenant_id"] == "t1"
        assert "task_id" not in bound

    assert "order_id" not in get_contextvars()
