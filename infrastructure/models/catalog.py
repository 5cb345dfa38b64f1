"""
商品目录快照与租户定价配置（只读，由外部同步写入）
"""
from sqlalchemy import Boolean, Column, DateTime, JSON, Numeric, String, UniqueConstraint

from .base import Base, Money


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_published = Column(Boolean, nullable=False, default=False)
    # {"Size": {"price_type": "base", "available_options": {"Small": "100", ...}}}
    price_configuration = Column(JSON, nullable=False, default=dict)


class ToppingModel(Base):
    __tablename__ = "toppings"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Money, nullable=False)
    is_published = Column(Boolean, nullable=False, default=False)


class DeliveryConfigurationModel(Base):
    __tablename__ = "delivery_configurations"

    tenant_id = Column(String(64), primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # [{"min_order_value": "0", "delivery_charge": "40"}, ...]
    order_value_tiers = Column(JSON, nullable=False, default=list)
    free_delivery_threshold = Column(Money, nullable=True)


class TaxConfigurationModel(Base):
    __tablename__ = "tax_configurations"

    tenant_id = Column(String(64), primary_key=True)
    # [{"name": "GST", "rate": "5", "is_active": true}, ...]
    taxes = Column(JSON, nullable=False, default=list)


class CouponModel(Base):
    __tablename__ = "coupons"

    code = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, default="")
    discount = Column(Numeric(5, 2), nullable=False, comment="折扣百分比")
    valid_upto = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("code", "tenant_id", name="uq_coupons_code_tenant"),
    )
