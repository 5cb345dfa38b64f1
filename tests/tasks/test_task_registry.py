import infrastructure.tasks.tasks  # noqa: F401 to register tasks
from infrastructure.tasks.config.celery import celery_app
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


RETRY_TASKS = {
    "wallet.redeem_credits",
    "wallet.complete_redemption",
    "wallet.add_cashback",
    "wallet.rollback_redemption",
    "wallet.settle_full_payment",
    "idempotency.purge_expired",
}


def test_retry_tasks_are_registered():
    assert RETRY_TASKS <= set(celery_app.tasks.keys())


def test_wallet_tasks_route_to_high_priority_queue():
    routes = celery_app.conf.task_routes
    assert routes["wallet.*"] == {"queue": "high"}
    assert routes["idempotency.*"] == {"queue": "low"}


def test_dispatcher_sends_by_name(monkeypatch):
    sent = []
    monkeypatch.setattr(celery_app, "send_task", lambda name, args=(), kwargs=None: sent.append((name, kwargs)))

    TaskDispatcher().enqueue("wallet.complete_redemption", kwargs={"order_id": "o-1"})

    assert sent == [("wallet.complete_redemption", {"order_id": "o-1"})]


def test_run_async_drives_coroutines():
    async def answer():
        return 42

    task = celery_app.tasks["wallet.complete_redemption"]
    assert task.run_async(answer()) == 42
