"""Idempotency record: cached response for a (key, user, endpoint) tuple."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


@dataclass
class IdempotencyRecord:
    key: str
    user_id: str
    endpoint: str
    response: dict
    status_code: int
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def new(cls, key: str, user_id: str, endpoint: str, response: dict, status_code: int, ttl_seconds: int):
        now = datetime.now(timezone.utc)
        return cls(
            key=key,
            user_id=user_id,
            endpoint=endpoint,
            response=response,
            status_code=status_code,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at


@dataclass(frozen=True)
class IdempotencyContext:
    """Key presented by the client for the current request."""

    key: str
    user_id: str
    endpoint: str
