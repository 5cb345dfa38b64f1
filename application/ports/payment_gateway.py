"""
支付网关端口：PaymentService 只依赖此协议，Razorpay / Stripe 适配器在基础设施层实现。

跨越此边界的金额一律是整数最小货币单位（paise / cents）。
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import (
    CreateGatewayOrder,
    GatewayOrder,
    GatewayRefund,
    GatewayRefundRequest,
    PaymentDetails,
    WebhookEvent,
)


@runtime_checkable
class PaymentGateway(Protocol):
    provider: str

    async def create_order(self, req: CreateGatewayOrder) -> GatewayOrder: ...

    async def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str | None) -> bool: ...

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:
        """req.amount_minor 为 None 时全额退款；idempotency_key 透传给网关"""
        ...

    async def get_payment_details(self, payment_id: str) -> PaymentDetails: ...

    async def get_refunds(self, payment_id: str) -> list[GatewayRefund]: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        """校验签名并解析回调；签名无效抛 PaymentSignatureError"""
        ...
