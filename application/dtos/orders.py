"""
订单相关 DTO
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field

from application.dtos.common import DTOBase
from domain.order.entity import Order, OrderStatus, PaymentMode
from domain.pricing.entity import OrderItem, SelectedTopping


class ToppingIn(DTOBase):
    id: str
    name: str = ""
    price: Decimal = Field(..., ge=0)


class OrderItemIn(DTOBase):
    product_id: str
    name: str = ""
    qty: int = Field(..., ge=1)
    price_configuration: dict[str, str] = Field(default_factory=dict, description="配置项 -> 选项名")
    toppings: list[ToppingIn] = Field(default_factory=list)
    total_price: Optional[Decimal] = None

    def to_domain(self) -> OrderItem:
        return OrderItem(
            product_id=self.product_id,
            name=self.name,
            qty=self.qty,
            price_configuration=dict(self.price_configuration),
            toppings=[SelectedTopping(id=t.id, name=t.name, price=t.price) for t in self.toppings],
            total_price=self.total_price,
        )


class CreateOrderDTO(DTOBase):
    """下单请求；金额为客户端计算值，服务端会重新计算并校验"""
    tenant_id: Optional[str] = None
    items: list[OrderItemIn] = Field(..., min_length=1)
    address: Optional[str] = None
    comment: Optional[str] = None
    coupon_code: Optional[str] = None
    payment_mode: PaymentMode = PaymentMode.card
    total: Decimal = Field(..., ge=0)
    sub_total: Optional[Decimal] = None
    discount: Optional[Decimal] = Field(default=None, ge=0)
    delivery_charge: Optional[Decimal] = Field(default=None, ge=0)
    tax_total: Optional[Decimal] = Field(default=None, ge=0)
    wallet_credits_applied: Decimal = Field(default=Decimal("0"), ge=0)


class UpdateOrderStatusDTO(DTOBase):
    status: OrderStatus


class TaxLineDTO(DTOBase):
    name: str
    rate: Decimal
    amount: Decimal


class OrderLineDTO(DTOBase):
    product_id: str
    name: str
    qty: int
    price_configuration: dict[str, str]
    toppings: list[dict]
    unit_price: Decimal
    total_price: Decimal


class RefundDetailsDTO(DTOBase):
    total_refunded: Decimal
    wallet_refunded: Decimal
    gateway_refunded: Decimal
    last_refunded_at: Optional[datetime] = None


class OrderResponseDTO(DTOBase):
    id: str
    tenant_id: str
    customer_id: str
    items: list[OrderLineDTO]
    sub_total: Decimal
    discount: Decimal
    delivery_charge: Decimal
    taxes: list[TaxLineDTO]
    tax_total: Decimal
    total: Decimal
    wallet_credits_applied: Decimal
    final_total: Decimal
    payment_mode: str
    payment_status: str
    status: str
    coupon_code: Optional[str] = None
    address: Optional[str] = None
    comment: Optional[str] = None
    delivery_info: Optional[dict] = None
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    refund_details: RefundDetailsDTO
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderResponseDTO":
        return cls(
            id=order.id,
            tenant_id=order.tenant_id,
            customer_id=order.customer_id,
            items=[OrderLineDTO(**line.__dict__) for line in order.items],
            sub_total=order.sub_total,
            discount=order.discount,
            delivery_charge=order.delivery_charge,
            taxes=[TaxLineDTO(name=t.name, rate=t.rate, amount=t.amount) for t in order.taxes],
            tax_total=order.tax_total,
            total=order.total,
            wallet_credits_applied=order.wallet_credits_applied,
            final_total=order.final_total,
            payment_mode=order.payment_mode.value,
            payment_status=order.payment_status.value,
            status=order.status.value,
            coupon_code=order.coupon_code,
            address=order.address,
            comment=order.comment,
            delivery_info=order.delivery_info,
            payment_id=order.payment_id,
            gateway_order_id=order.gateway_order_id,
            refund_details=RefundDetailsDTO(
                total_refunded=order.refund_details.total_refunded,
                wallet_refunded=order.refund_details.wallet_refunded,
                gateway_refunded=order.refund_details.gateway_refunded,
                last_refunded_at=order.refund_details.last_refunded_at,
            ),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    def to_payload(self) -> dict:
        """JSON 可序列化的订单文档（事件与幂等缓存共用）"""
        return self.model_dump(mode="json")
