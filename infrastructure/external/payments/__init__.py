"""
支付网关工厂：按名称返回 Razorpay / Stripe 客户端

未配置密钥时客户端构造抛出 RuntimeError，由调用方决定降级方式。
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway
from core.settings import normalize_provider, payment_settings
from infrastructure.external.payments.exceptions import UnsupportedProviderError


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = normalize_provider(provider) if provider else payment_settings.default_provider
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient()
    if name == "razorpay":
        from .razorpay_client import RazorpayClient
        return RazorpayClient()
    raise UnsupportedProviderError(name)
