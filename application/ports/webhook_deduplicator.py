"""Webhook de-duplication port (implemented on Redis SET NX)."""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class WebhookDeduplicator(Protocol):
    async def first_seen(self, key: str, ttl_seconds: int) -> bool:
        """True when ``key`` was not seen within the TTL window (and marks it seen)."""
        ...
