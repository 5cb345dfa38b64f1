"""
Order lifecycle events.

Events carry the full order document; publishers decide the wire format.
Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import uuid


class OrderEventType(str, Enum):
    ORDER_CREATED = "order-created"
    PAYMENT_COMPLETED = "order-payment-completed"
    PAYMENT_FAILED = "order-payment-failed"
    PAYMENT_REFUNDED = "order-payment-refunded"
    STATUS_UPDATED = "order-status-updated"
    ORDER_DELETED = "order-deleted"


@dataclass
class OrderEvent:
    event: OrderEventType
    order_id: str
    data: dict
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
