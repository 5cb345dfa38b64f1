"""
Order pricing, wallet and refund codes (7xxxx).
"""
from __future__ import annotations

from enum import IntEnum


class BillingCode(IntEnum):
    # Pricing (70xxx)
    PRICE_MISMATCH = 70000
    PRODUCT_UNAVAILABLE = 70001
    COUPON_NOT_FOUND = 70002
    COUPON_EXPIRED = 70003
    TENANT_REQUIRED = 70004

    # Orders (71xxx)
    ORDER_NOT_FOUND = 71000
    ORDER_STATE_INVALID = 71001
    IDEMPOTENCY_KEY_MISSING = 71002
    IDEMPOTENCY_CONFLICT = 71003

    # Wallet (72xxx)
    WALLET_NOT_FOUND = 72000
    INSUFFICIENT_BALANCE = 72001
    WALLET_UPDATE_FAILED = 72002
    WALLET_TRANSACTION_CONFLICT = 72003

    # Refunds (73xxx)
    REFUND_NOT_ALLOWED = 73000
    REFUND_EXCEEDS_REFUNDABLE = 73001
