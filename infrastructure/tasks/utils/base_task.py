"""Common base task for Celery jobs"""
from __future__ import annotations

import asyncio
from typing import Any, Coroutine, TypeVar

from celery import Task

from core.logging_config import get_logger, order_log_context

logger = get_logger(__name__)

T = TypeVar("T")


class BaseTask(Task):
    """Runs async ledger work inside a sync worker and logs every outcome."""

    def __call__(self, *args, **kwargs):
        # 任务内的所有日志都带上订单与任务标识
        with order_log_context(kwargs.get("order_id"), task_name=self.name, task_id=self.request.id):
            return super().__call__(*args, **kwargs)

    def run_async(self, coro: Coroutine[Any, Any, T]) -> T:
        # one event loop per invocation; see tasks._runtime for the engine side
        return asyncio.run(coro)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            order_id=(kwargs or {}).get("order_id"),
            retries=self.request.retries,
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            order_id=(kwargs or {}).get("order_id"),
            kwargs=kwargs,
            exc=str(exc),
            error_type=type(exc).__name__,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            result=retval,
        )
        super().on_success(retval, task_id, args, kwargs)
