import json
from decimal import Decimal

import pytest

from core.config import KafkaSettings
from domain.order.events import OrderEvent, OrderEventType
from infrastructure.adapters.order_event_publisher import (
    KafkaOrderEventPublisher,
    OrderEventPublishError,
    build_order_event_publisher,
    encode_order_event,
    producer_config,
)


class _Msg:
    def partition(self):
        return 3

    def offset(self):
        return 42


class FakeProducer:
    def __init__(self, error=None, full_times=0):
        self.error = error
        self.full_times = full_times
        self.produced = []
        self._pending = []
        self.flushed = False

    def produce(self, topic, key, value, headers, on_delivery):
        if self.full_times:
            self.full_times -= 1
            raise BufferError("queue full")
        self.produced.append({"topic": topic, "key": key, "value": value, "headers": dict(headers)})
        self._pending.append(on_delivery)

    def poll(self, timeout):
        while self._pending:
            self._pending.pop()(self.error, _Msg())

    def flush(self, timeout):
        self.flushed = True


def _event() -> OrderEvent:
    return OrderEvent(
        event=OrderEventType.PAYMENT_COMPLETED,
        order_id="o-1",
        data={"id": "o-1", "total": Decimal("400.00")},
    )


def test_encode_order_event():
    event = _event()
    key, value, headers = encode_order_event(event)

    assert key == b"o-1"
    assert json.loads(value) == {"event": "order-payment-completed", "data": {"id": "o-1", "total": "400.00"}}
    assert dict(headers)["x-event-type"] == b"order-payment-completed"
    assert dict(headers)["x-event-id"] == event.event_id.encode()


@pytest.mark.asyncio
async def test_publish_waits_for_delivery_report():
    producer = FakeProducer(full_times=1)
    publisher = KafkaOrderEventPublisher(producer, "orders")

    await publisher.publish(_event())
    await publisher.aclose()

    assert producer.produced[0]["topic"] == "orders"
    assert producer.produced[0]["key"] == b"o-1"
    assert producer.flushed


def test_delivery_error_is_raised():
    publisher = KafkaOrderEventPublisher(FakeProducer(error="broker down"), "orders")

    with pytest.raises(OrderEventPublishError):
        publisher.publish_sync(_event())


def test_producer_config_security_protocol():
    plain = producer_config(KafkaSettings())
    secured = producer_config(KafkaSettings(tls_enable=True, sasl_mechanism="PLAIN", sasl_username="u"))

    assert plain["security.protocol"] == "PLAINTEXT"
    assert secured["security.protocol"] == "SASL_SSL"
    assert secured["sasl.username"] == "u"


def test_disabled_kafka_builds_no_publisher():
    assert build_order_event_publisher(KafkaSettings(enabled=False)) is None
