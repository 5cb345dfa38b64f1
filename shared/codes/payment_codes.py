"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    UNSUPPORTED_PROVIDER = 60005


# Provider status -> order payment_status
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "complete": "paid",
        "paid": "paid",
        "succeeded": "paid",
        "open": "pending",
        "unpaid": "pending",
        "processing": "pending",
        "requires_payment_method": "failed",
        "expired": "failed",
        "canceled": "failed",
    },
    "razorpay": {
        "created": "pending",
        "attempted": "pending",
        "authorized": "pending",
        "captured": "paid",
        "paid": "paid",
        "failed": "failed",
        "refunded": "refunded",
    },
}
