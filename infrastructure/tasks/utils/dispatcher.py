"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from application.ports.task_dispatcher import TaskDispatcherPort

from ..config.celery import celery_app


class TaskDispatcher(TaskDispatcherPort):
    """Facade used by the application layer to schedule tasks by name."""

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
