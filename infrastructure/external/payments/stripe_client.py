"""
Stripe Checkout adapter using the official stripe-python SDK.

Notes on SDK usage:
- The SDK is synchronous; calls run in a worker thread via anyio so the event
  loop is never blocked.
- Idempotency keys are supplied via the `idempotency_key` kwarg.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header.
- The gateway order id is the Checkout Session id; the payment id is the
  PaymentIntent behind it.
"""
from __future__ import annotations

from functools import partial
from typing import Any, Optional

import anyio
import stripe

from application.dtos.payments import (
    CreateGatewayOrder,
    GatewayOrder,
    GatewayRefund,
    GatewayRefundRequest,
    PaymentDetails,
    WebhookEvent,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRateLimitedError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from core.settings import PaymentSettings, payment_settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, settings: Optional[PaymentSettings] = None):
        cfg = settings or payment_settings
        super().__init__(cfg)
        if not cfg.stripe.secret_key:
            raise RuntimeError("PAYMENT__STRIPE__SECRET_KEY not configured")
        stripe.api_key = cfg.stripe.secret_key

    async def _call(self, fn, /, **kwargs):
        try:
            return await anyio.to_thread.run_sync(partial(fn, **kwargs))
        except stripe.RateLimitError as exc:
            raise PaymentRateLimitedError(str(exc), provider=self.provider, provider_code=exc.code) from exc
        except stripe.APIConnectionError as exc:
            raise PaymentRecoverableError(str(exc), provider=self.provider) from exc
        except stripe.StripeError as exc:
            raise PaymentProviderError(str(exc), provider=self.provider, provider_code=exc.code) from exc

    def _refund(self, refund: Any) -> GatewayRefund:
        return GatewayRefund(
            id=str(_field(refund, "id")),
            amount_minor=int(_field(refund, "amount", 0) or 0),
            status=self._map_status(str(_field(refund, "status", ""))),
            provider=self.provider,
            payment_id=_field(refund, "payment_intent"),
        )

    async def create_order(self, req: CreateGatewayOrder) -> GatewayOrder:
        metadata = {k: str(v) for k, v in (req.metadata or {}).items()}
        metadata.setdefault("order_id", req.order_id)
        session = await self._call(
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[
                {
                    "price_data": {
                        "currency": req.currency.lower(),
                        "unit_amount": req.amount_minor,
                        "product_data": {"name": req.description or f"Order {req.order_id}"},
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            success_url=self._settings.stripe.success_url.format(order_id=req.order_id),
            cancel_url=self._settings.stripe.cancel_url.format(order_id=req.order_id),
            idempotency_key=req.idempotency_key,
        )
        self._log("stripe_session_created", order_id=req.order_id, session_id=_field(session, "id"))
        return GatewayOrder(
            gateway_order_id=str(_field(session, "id")),
            status=self._map_status(str(_field(session, "payment_status", "unpaid"))),
            provider=self.provider,
            amount_minor=int(_field(session, "amount_total", req.amount_minor) or req.amount_minor),
            currency=str(_field(session, "currency", req.currency)).upper(),
            payment_url=_field(session, "url"),
        )

    async def verify_payment(self, gateway_order_id: str, payment_id: str, signature: str | None) -> bool:
        # Checkout has no client-side signature; trust the session state instead
        session = await self._call(stripe.checkout.Session.retrieve, id=gateway_order_id)
        if _field(session, "payment_status") != "paid":
            return False
        intent = _field(session, "payment_intent")
        intent_id = intent if isinstance(intent, str) else _field(intent, "id")
        return not payment_id or intent_id is None or intent_id == payment_id

    async def refund(self, req: GatewayRefundRequest) -> GatewayRefund:
        params: dict[str, Any] = {
            "payment_intent": req.payment_id,
            "metadata": dict(req.notes or {}),
            "idempotency_key": req.idempotency_key,
        }
        if req.amount_minor is not None:
            params["amount"] = req.amount_minor
        if req.reason:
            params["metadata"]["reason"] = req.reason
        refund = await self._call(stripe.Refund.create, **params)
        self._log("stripe_refund_created", payment_id=req.payment_id, refund_id=_field(refund, "id"))
        return self._refund(refund)

    async def get_payment_details(self, payment_id: str) -> PaymentDetails:
        intent = await self._call(stripe.PaymentIntent.retrieve, id=payment_id)
        metadata = _field(intent, "metadata")
        return PaymentDetails(
            payment_id=str(_field(intent, "id", payment_id)),
            status=self._map_status(str(_field(intent, "status", ""))),
            provider=self.provider,
            amount_minor=_field(intent, "amount"),
            currency=str(_field(intent, "currency", "")).upper() or None,
            order_id=_field(metadata, "order_id"),
        )

    async def get_refunds(self, payment_id: str) -> list[GatewayRefund]:
        result = await self._call(stripe.Refund.list, payment_intent=payment_id, limit=100)
        return [self._refund(r) for r in (_field(result, "data") or [])]

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        secret = self._settings.stripe.webhook_secret
        if not secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        lowered = {str(k).lower(): v for k, v in headers.items()}
        sig = lowered.get("stripe-signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            event = stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=self._settings.webhook.tolerance_seconds,
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc

        event_type = str(_field(event, "type"))
        obj = _field(_field(event, "data"), "object")
        metadata = _field(obj, "metadata")
        data: dict[str, Any] = {"status": None, "order_id": _field(metadata, "order_id")}

        if event_type == "checkout.session.completed":
            if _field(obj, "payment_status") == "paid":
                data["status"] = "paid"
            data["gateway_order_id"] = _field(obj, "id")
            data["payment_id"] = _field(obj, "payment_intent")
        elif event_type == "checkout.session.expired":
            data["status"] = "failed"
            data["gateway_order_id"] = _field(obj, "id")
        elif event_type == "payment_intent.payment_failed":
            data["status"] = "failed"
            data["payment_id"] = _field(obj, "id")
        elif event_type == "charge.refunded":
            data["status"] = "refunded"
            data["payment_id"] = _field(obj, "payment_intent")
            logger.info(
                "stripe_charge_refunded",
                charge_id=_field(obj, "id"),
                amount_refunded=_field(obj, "amount_refunded"),
            )

        return WebhookEvent(
            id=str(_field(event, "id")),
            type=event_type,
            provider=self.provider,
            data=data,
            raw_headers=dict(headers),
            raw_body=body,
        )
