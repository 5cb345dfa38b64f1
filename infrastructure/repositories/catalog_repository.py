"""
目录快照与租户配置的只读仓储

每次查询使用独立的短会话，不参与写事务。
"""
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.pricing.entity import (
    Coupon,
    DeliveryConfiguration,
    OrderValueTier,
    PriceConfiguration,
    Product,
    TaxComponent,
    TaxConfiguration,
    Topping,
)
from domain.pricing.repository import CatalogRepository, TenantConfigRepository
from infrastructure.database import AsyncSessionLocal
from infrastructure.models.catalog import (
    CouponModel,
    DeliveryConfigurationModel,
    ProductModel,
    TaxConfigurationModel,
    ToppingModel,
)


def _dec(value) -> Decimal:
    return Decimal(str(value))


def _product_from_model(model: ProductModel) -> Product:
    configuration = {}
    for key, raw in (model.price_configuration or {}).items():
        options = raw.get("available_options") or {}
        configuration[key] = PriceConfiguration(
            price_type=raw.get("price_type", "base"),
            available_options={name: _dec(price) for name, price in options.items()},
        )
    return Product(
        id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        is_published=bool(model.is_published),
        price_configuration=configuration,
    )


class SQLAlchemyCatalogRepository(CatalogRepository):

    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self._session_factory = session_factory

    async def get_product(self, product_id: str) -> Optional[Product]:
        async with self._session_factory() as session:
            model = await session.get(ProductModel, product_id)
            return _product_from_model(model) if model else None

    async def get_topping(self, topping_id: str) -> Optional[Topping]:
        async with self._session_factory() as session:
            model = await session.get(ToppingModel, topping_id)
            if model is None:
                return None
            return Topping(
                id=model.id,
                tenant_id=model.tenant_id,
                name=model.name,
                price=_dec(model.price),
                is_published=bool(model.is_published),
            )


class SQLAlchemyTenantConfigRepository(TenantConfigRepository):

    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self._session_factory = session_factory

    async def get_delivery_configuration(self, tenant_id: str) -> Optional[DeliveryConfiguration]:
        async with self._session_factory() as session:
            model = await session.get(DeliveryConfigurationModel, tenant_id)
            if model is None:
                return None
            tiers = [
                OrderValueTier(
                    min_order_value=_dec(t["min_order_value"]),
                    delivery_charge=_dec(t["delivery_charge"]),
                )
                for t in (model.order_value_tiers or [])
            ]
            threshold = model.free_delivery_threshold
            return DeliveryConfiguration(
                tenant_id=model.tenant_id,
                is_active=bool(model.is_active),
                order_value_tiers=tiers,
                free_delivery_threshold=_dec(threshold) if threshold is not None else None,
            )

    async def get_tax_configuration(self, tenant_id: str) -> Optional[TaxConfiguration]:
        async with self._session_factory() as session:
            model = await session.get(TaxConfigurationModel, tenant_id)
            if model is None:
                return None
            return TaxConfiguration(
                tenant_id=model.tenant_id,
                taxes=[
                    TaxComponent(name=t["name"], rate=_dec(t["rate"]), is_active=bool(t.get("is_active", True)))
                    for t in (model.taxes or [])
                ],
            )

    async def get_coupon(self, code: str, tenant_id: str) -> Optional[Coupon]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CouponModel).where(CouponModel.code == code, CouponModel.tenant_id == tenant_id)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return Coupon(
                code=model.code,
                tenant_id=model.tenant_id,
                discount=_dec(model.discount),
                valid_upto=model.valid_upto,
                title=model.title or "",
            )
