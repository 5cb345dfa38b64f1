"""Read-only ports for catalog snapshots and tenant pricing configuration."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from domain.pricing.entity import (
    Coupon,
    DeliveryConfiguration,
    Product,
    TaxConfiguration,
    Topping,
)


class CatalogRepository(ABC):
    """Replicated product/topping snapshot, keyed by id."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def get_topping(self, topping_id: str) -> Optional[Topping]:
        ...


class TenantConfigRepository(ABC):
    """Tenant-scoped delivery, tax and coupon configuration."""

    @abstractmethod
    async def get_delivery_configuration(self, tenant_id: str) -> Optional[DeliveryConfiguration]:
        ...

    @abstractmethod
    async def get_tax_configuration(self, tenant_id: str) -> Optional[TaxConfiguration]:
        ...

    @abstractmethod
    async def get_coupon(self, code: str, tenant_id: str) -> Optional[Coupon]:
        ...
