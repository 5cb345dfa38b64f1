from api.middleware.logging import sanitize


def test_sensitive_fields_are_masked_recursively():
    body = {
        "order_id": "o-1",
        "razorpay_signature": "abc",
        "payment": {"card": {"number": "4111"}, "amount": 100},
        "items": [{"token": "t"}],
    }

    assert sanitize(body) == {
        "order_id": "o-1",
        "razorpay_signature": "***",
        "payment": {"card": "***", "amount": 100},
        "items": [{"token": "***"}],
    }
