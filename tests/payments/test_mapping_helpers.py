from core.settings import PaymentSettings
from infrastructure.external.payments.base import BasePaymentClient


class _RazorpayMapClient(BasePaymentClient):
    provider = "razorpay"


class _StripeMapClient(BasePaymentClient):
    provider = "stripe"


def test_razorpay_status_mapping():
    c = _RazorpayMapClient(PaymentSettings())
    assert c._map_status("captured") == "paid"
    assert c._map_status("authorized") == "pending"
    assert c._map_status("failed") == "failed"
    # 未知状态原样返回
    assert c._map_status("processed") == "processed"


def test_stripe_status_mapping():
    c = _StripeMapClient(PaymentSettings())
    assert c._map_status("processing") == "pending"
    assert c._map_status("complete") == "paid"
    assert c._map_status("expired") == "failed"


def test_http_timeouts_follow_settings():
    timeout = _StripeMapClient(PaymentSettings()).timeouts
    assert timeout.connect == 1.0
    assert timeout.read == 3.0
