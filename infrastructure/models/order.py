"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""

from sqlalchemy import Column, DateTime, Index, JSON, String, Text

from .base import Base, Money, utcnow


class OrderModel(Base):
    """
    订单数据库模型

    金额字段统一使用 Money，业务规则在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, comment="订单ID")
    tenant_id = Column(String(64), nullable=False, index=True, comment="租户ID")
    customer_id = Column(String(64), nullable=False, index=True, comment="下单用户ID")

    # 明细与价格快照
    items = Column(JSON, nullable=False, comment="订单行（含下单时单价快照）")
    sub_total = Column(Money, nullable=False)
    discount = Column(Money, nullable=False, default=0)
    delivery_charge = Column(Money, nullable=False, default=0)
    taxes = Column(JSON, nullable=False, comment="税费明细 [{name, rate, amount}]")
    tax_total = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False, comment="钱包抵扣前总额")
    wallet_credits_applied = Column(Money, nullable=False, default=0)
    final_total = Column(Money, nullable=False, comment="需外部支付金额")
    coupon_code = Column(String(64), nullable=True)
    delivery_info = Column(JSON, nullable=True)

    # 支付
    payment_mode = Column(String(20), nullable=False, default="card")
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    payment_id = Column(String(200), nullable=True, index=True, comment="网关支付ID")
    gateway_order_id = Column(String(200), nullable=True, index=True, comment="网关订单/会话ID")

    # 履约
    status = Column(String(32), nullable=False, default="pending", index=True)
    address = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)

    # 退款累计
    total_refunded = Column(Money, nullable=False, default=0)
    wallet_refunded = Column(Money, nullable=False, default=0)
    gateway_refunded = Column(Money, nullable=False, default=0)
    refund_reserved = Column(Money, nullable=False, default=0, comment="处理中的退款额度")
    last_refunded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_orders_tenant_created", "tenant_id", "created_at"),
        Index("ix_orders_customer_created", "customer_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id='{self.id}', tenant_id='{self.tenant_id}', total={self.total}, "
            f"payment_status='{self.payment_status}')>"
        )
