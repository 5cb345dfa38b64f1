import pytest


stripe = pytest.importorskip("stripe")

from core.settings import PaymentSettings, StripeSettings
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.stripe_client import StripeClient


def _client() -> StripeClient:
    return StripeClient(settings=PaymentSettings(stripe=StripeSettings(secret_key="sk_test_123", webhook_secret="whsec_test")))


def test_stripe_parse_checkout_completed(monkeypatch):
    # Fake construct_event to bypass signature crypto
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {
                "id": "evt_1",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "id": "cs_test_1",
                        "payment_status": "paid",
                        "payment_intent": "pi_1",
                        "metadata": {"order_id": "o-1"},
                    }
                },
            }

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)

    evt = _client().parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, b"{}")

    assert evt.id == "evt_1"
    assert evt.provider == "stripe"
    assert evt.data == {
        "status": "paid",
        "order_id": "o-1",
        "gateway_order_id": "cs_test_1",
        "payment_id": "pi_1",
    }


def test_stripe_expired_session_is_a_failure(monkeypatch):
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {"id": "evt_2", "type": "checkout.session.expired", "data": {"object": {"id": "cs_test_2"}}}

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)

    evt = _client().parse_webhook({"stripe-signature": "t=1,v1=abc"}, b"{}")

    assert evt.data["status"] == "failed"
    assert evt.data["gateway_order_id"] == "cs_test_2"


def test_stripe_rejects_missing_signature_header():
    with pytest.raises(PaymentSignatureError):
        _client().parse_webhook({}, b"{}")


def test_stripe_requires_secret_key():
    with pytest.raises(RuntimeError):
        StripeClient(settings=PaymentSettings(stripe=StripeSettings()))
