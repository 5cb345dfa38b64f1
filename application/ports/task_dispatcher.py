"""Background task scheduling port (implemented by the Celery dispatcher)."""
from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable


@runtime_checkable
class TaskDispatcherPort(Protocol):
    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None: ...
