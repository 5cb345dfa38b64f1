"""
Post-commit side effects.

Steps registered here run only after the primary transaction committed. Each
step is isolated: a failure is logged (and optionally handed to the task
dispatcher for a later retry) and never reaches the caller, since the primary
result is already durable.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from application.ports.task_dispatcher import TaskDispatcherPort
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


logger = get_logger(__name__)


@dataclass
class PostCommitAction:
    name: str
    run: Callable[[], Awaitable[Any]]
    # Celery task that can redo this step idempotently
    retry_task: Optional[str] = None
    retry_kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass
class PostCommitResult:
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class PostCommitActions:
    def __init__(self, dispatcher: Optional[TaskDispatcherPort] = None) -> None:
        self._dispatcher = dispatcher
        self._actions: list[PostCommitAction] = []

    def add(
        self,
        name: str,
        run: Callable[[], Awaitable[Any]],
        *,
        retry_task: Optional[str] = None,
        retry_kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        self._actions.append(PostCommitAction(name, run, retry_task, dict(retry_kwargs or {})))

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def names(self) -> list[str]:
        return [a.name for a in self._actions]

    async def run(self, **log_context: Any) -> PostCommitResult:
        result = PostCommitResult()
        for action in self._actions:
            try:
                await action.run()
                result.succeeded.append(action.name)
            except Exception as exc:
                result.failed.append(action.name)
                logger.error(
                    "post_commit_action_failed",
                    action=action.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    **log_context,
                )
                if isinstance(exc, BusinessException):
                    # 业务拒绝（余额不足等）重试也不会成功
                    continue
                self._schedule_retry(action, log_context)
        return result

    def _schedule_retry(self, action: PostCommitAction, log_context: dict[str, Any]) -> None:
        if self._dispatcher is None or not action.retry_task:
            return
        try:
            self._dispatcher.enqueue(action.retry_task, kwargs=action.retry_kwargs)
            logger.info("post_commit_retry_scheduled", action=action.name, task=action.retry_task, **log_context)
        except Exception as exc:
            logger.error(
                "post_commit_retry_schedule_failed",
                action=action.name,
                task=action.retry_task,
                error=str(exc),
                **log_context,
            )
