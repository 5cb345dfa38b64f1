"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel
from .wallet import WalletModel, WalletTransactionModel
from .idempotency import IdempotencyRecordModel
from .catalog import (
    ProductModel,
    ToppingModel,
    DeliveryConfigurationModel,
    TaxConfigurationModel,
    CouponModel,
)

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "WalletModel",
    "WalletTransactionModel",
    "IdempotencyRecordModel",
    "ProductModel",
    "ToppingModel",
    "DeliveryConfigurationModel",
    "TaxConfigurationModel",
    "CouponModel",
]
