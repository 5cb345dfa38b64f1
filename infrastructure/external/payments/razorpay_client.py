"""
Razorpay adapter over its REST API (httpx + tenacity via BasePaymentClient).

- Orders: POST /orders (amount in paise, receipt = our order id)
- Checkout signature: HMAC-SHA256("{razorpay_order_id}|{razorpay_payment_id}", key_secret)
- Webhooks: HMAC-SHA256(raw body, webhook_secret) in the X-Razorpay-Signature header
"""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CreateGatewayOrder,
    GatewayOrder,
    GatewayRefund,
    GatewayRefundRequest,
    PaymentDetails,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentSignatureError


logger = get_logger(__name__)

# webhook event -> internal payment status
_WEBHOOK_STATUS = {
    "payment.captured": "paid",
    "order.paid": "paid",
    "payment.failed": "failed",
    "refund.processed": "refunded",
}


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = settings or payment_settings
        if not cfg.razorpay.key_id or not cfg.razorpay.key_secret:
            raise RuntimeError("PAYMENT__RAZORPAY__KEY_ID / KEY_SECRET not configured")
        super().__init__(
            cfg,
            base_url=cfg.razorpay.gateway,
            auth=(cfg.razorpay.key_id, cfg.razorpay.key_secret),
            transport=transport,
        )
        self._key_secret = cfg.razorpay.key_secret
        self._webhook_secret = cfg.razorpay.webhook_secret

    def _refund(self, data: dict[str, Any]) -> GatewayRefund:
        return GatewayRefund(
            id=str(data["id"]),
            amount_minor=int(data.get("amount") or 0),
            status=self._map_status(str(data.get("status", ""))),
            provider=self.provider,
            payment_id=data.get("payment_id"),
        )

    async def create_order(self, req: CreateGatewayOrder) -> GatewayOrder:
        notes = {k: str(v) for k, v in (req.metadata or {}).items()}
        notes.setdefault("order_id", req.order_id)
        headers = {"X-Idempotency-Key": req.idempotency_key} if req.idempotency_key else None
        data = await self._request(
            "POST",
            "/orders",
            json={
                "amount": req.amount_minor,
                "currency": req.currency,
                "receipt": req.order_id,
                "notes": notes,
            },
            headers=headers,
        )
        self._log("razorpay_order_created", order_id=req.order_id, gateway_order_id=data.get("id"))
        return GatewayOrder(
            gateway_order_id=str(data["id"]),
            status=self._map_status(str(data.get("status", "created"))),
            provider=self.provider,
            amount_minor=int(data.get("amount", req.amount_minor)),
            currency=str(data.get("currency", req.currency)),
        )

    async def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str | None) -> bool:
        if not signature:
            return False
        expected = _hmac_hex(self._key_secret, f"{gateway_order_id}|{payment_id}".encode("utf-8"))
        return hmac.compare_digest(expected, signature)

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:
        body: dict[str, Any] = {}
        if req.amount_minor is not None:
            body["amount"] = req.amount_minor
        notes = dict(req.notes or {})
        if req.reason:
            notes.setdefault("reason", req.reason)
        if notes:
            body["notes"] = notes
        headers = {"X-Idempotency-Key": req.idempotency_key} if req.idempotency_key else None
        data = await self._request("POST", f"/payments/{req.payment_id}/refund", json=body, headers=headers)
        self._log("razorpay_refund_created", payment_id=req.payment_id, refund_id=data.get("id"))
        return self._refund(data)

    async def get_payment_details(self, payment_id: str) -> PaymentDetails:
        data = await self._request("GET", f"/payments/{payment_id}")
        return PaymentDetails(
            payment_id=str(data.get("id", payment_id)),
            status=self._map_status(str(data.get("status", ""))),
            provider=self.provider,
            amount_minor=data.get("amount"),
            currency=data.get("currency"),
            order_id=data.get("order_id"),
            raw=data,
        )

    async def get_refunds(self, payment_id: str) -> list[GatewayRefund]:
        data = await self._request("GET", f"/payments/{payment_id}/refunds")
        return [self._refund(item) for item in data.get("items", [])]

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        if not self._webhook_secret:
            raise PaymentSignatureError("Missing RAZORPAY__WEBHOOK_SECRET", provider=self.provider)
        lowered = {str(k).lower(): v for k, v in headers.items()}
        sig = lowered.get("x-razorpay-signature")
        if not sig:
            raise PaymentSignatureError("Missing X-Razorpay-Signature header", provider=self.provider)
        if not hmac.compare_digest(_hmac_hex(self._webhook_secret, body), str(sig)):
            raise PaymentSignatureError("Invalid webhook signature", provider=self.provider)

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise PaymentProviderError("Malformed webhook payload", provider=self.provider) from exc

        event_type = str(payload.get("event", ""))
        entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
        notes = entity.get("notes") or {}
        # Razorpay sends the event id as a header; fall back to payment id + type
        event_id = lowered.get("x-razorpay-event-id") or f"{entity.get('id', '')}:{event_type}"
        return WebhookEvent(
            id=str(event_id),
            type=event_type,
            provider=self.provider,
            data={
                "status": _WEBHOOK_STATUS.get(event_type),
                "gateway_order_id": entity.get("order_id"),
                "payment_id": entity.get("id"),
                "order_id": notes.get("order_id") if isinstance(notes, dict) else None,
                "amount_minor": entity.get("amount"),
            },
            raw_headers=dict(headers),
            raw_body=body,
        )
