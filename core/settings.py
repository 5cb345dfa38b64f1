"""
支付网关配置（pydantic-settings，嵌套环境变量）

与 core.config.Settings 分开加载，网关密钥可单独轮换，例如：
    PAYMENT__DEFAULT_PROVIDER=stripe
    PAYMENT__RAZORPAY__KEY_SECRET=...
    PAYMENT__STRIPE__WEBHOOK_SECRET=...
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PROVIDER_ALIASES = {"rzp": "razorpay"}


def normalize_provider(name: str) -> str:
    name = name.strip().lower()
    return PROVIDER_ALIASES.get(name, name)


class PaymentTimeouts(BaseModel):
    """单次 HTTP 调用超时（秒）"""
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    # 仅对连接/超时类错误重试，业务拒绝不重试
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    dedupe_ttl_seconds: int = 24 * 60 * 60


class RazorpaySettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    webhook_secret: Optional[str] = None
    gateway: str = "https://api.razorpay.com/v1"


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    # Checkout 跳转地址，{order_id} 会被替换
    success_url: str = "http://localhost:3000/payment/success?orderId={order_id}"
    cancel_url: str = "http://localhost:3000/payment/cancel?orderId={order_id}"


class PaymentSettings(BaseSettings):
    default_provider: str = "razorpay"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    razorpay: RazorpaySettings = Field(default_factory=RazorpaySettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("default_provider")
    @classmethod
    def _normalize_default_provider(cls, v: str) -> str:
        return normalize_provider(v)


payment_settings = PaymentSettings()
