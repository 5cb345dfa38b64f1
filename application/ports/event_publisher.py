"""
Order event publisher port.

Publishing is best-effort from the application's point of view; callers run
it from the post-commit hook list, never inside a database transaction.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.order.events import OrderEvent


@runtime_checkable
class OrderEventPublisher(Protocol):
    async def publish(self, event: OrderEvent) -> None: ...
