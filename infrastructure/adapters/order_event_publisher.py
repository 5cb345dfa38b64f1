"""订单事件发布（Kafka, confluent-kafka）

消息格式：
    topic   = settings.kafka.order_topic
    key     = 订单 ID（同一订单的事件落在同一分区，保证顺序）
    value   = {"event": <事件类型>, "data": <订单文档>}
    headers = x-event-id / x-event-type / x-occurred-at

confluent Producer 是同步 API，publish 通过 anyio 线程池调用，
每条消息只等待自己的投递回执，不做全量 flush。
"""
from __future__ import annotations

import json
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import anyio

from application.ports.event_publisher import OrderEventPublisher
from core.config import KafkaSettings
from core.logging_config import get_logger
from domain.order.events import OrderEvent


logger = get_logger(__name__)


class OrderEventPublishError(Exception):
    """事件未能投递到 Kafka"""


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_order_event(event: OrderEvent) -> tuple[bytes, bytes, list[tuple[str, bytes]]]:
    """OrderEvent -> (key, value, headers)"""
    value = json.dumps(
        {"event": event.event.value, "data": event.data},
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")
    headers = [
        ("x-event-id", event.event_id.encode("utf-8")),
        ("x-event-type", event.event.value.encode("utf-8")),
        ("x-occurred-at", event.occurred_at.isoformat().encode("utf-8")),
    ]
    return event.order_id.encode("utf-8"), value, headers


def producer_config(ks: KafkaSettings) -> dict:
    use_sasl = bool(ks.sasl_mechanism)
    if ks.tls_enable:
        protocol = "SASL_SSL" if use_sasl else "SSL"
    else:
        protocol = "SASL_PLAINTEXT" if use_sasl else "PLAINTEXT"

    conf: dict = {
        "bootstrap.servers": ks.bootstrap_servers,
        "client.id": ks.client_id,
        "acks": ks.producer_acks,
        "enable.idempotence": ks.producer_enable_idempotence,
        "compression.type": ks.producer_compression_type,
        "linger.ms": ks.producer_linger_ms,
        "message.timeout.ms": ks.producer_message_timeout_ms,
        "security.protocol": protocol,
    }
    if ks.tls_enable:
        conf["ssl.ca.location"] = ks.tls_ca_location
        conf["ssl.certificate.location"] = ks.tls_certificate
        conf["ssl.key.location"] = ks.tls_key
        conf["enable.ssl.certificate.verification"] = ks.tls_verify
    if use_sasl:
        conf["sasl.mechanism"] = ks.sasl_mechanism
        conf["sasl.username"] = ks.sasl_username
        conf["sasl.password"] = ks.sasl_password
    return conf


class KafkaOrderEventPublisher(OrderEventPublisher):
    def __init__(
        self,
        producer,
        topic: str = "order",
        *,
        send_wait_s: float = 5.0,
        delivery_wait_s: float = 30.0,
    ) -> None:
        self.producer = producer
        self.topic = topic
        self.send_wait_s = send_wait_s
        self.delivery_wait_s = delivery_wait_s

    def publish_sync(self, event: OrderEvent) -> tuple[int, int]:
        """投递一条事件并等待回执，返回 (partition, offset)"""
        key, value, headers = encode_order_event(event)
        report: dict = {}

        def _on_delivery(err, msg):
            if err is not None:
                report["error"] = err
            else:
                report["meta"] = (msg.partition(), msg.offset())

        # 本地队列满时先 poll 腾出空间，超时放弃
        deadline = time.monotonic() + self.send_wait_s
        while True:
            try:
                self.producer.produce(
                    topic=self.topic, key=key, value=value, headers=headers, on_delivery=_on_delivery
                )
                break
            except BufferError:
                self.producer.poll(0.1)
                if time.monotonic() >= deadline:
                    raise OrderEventPublishError(f"producer queue full, dropped {event.event.value}")

        deadline = time.monotonic() + self.delivery_wait_s
        while not report:
            self.producer.poll(0.05)
            if time.monotonic() >= deadline:
                raise OrderEventPublishError(f"no delivery report for {event.event.value}")

        if "error" in report:
            raise OrderEventPublishError(str(report["error"]))

        partition, offset = report["meta"]
        logger.info(
            "order_event_published",
            topic=self.topic,
            event_type=event.event.value,
            order_id=event.order_id,
            partition=partition,
            offset=offset,
        )
        return partition, offset

    async def publish(self, event: OrderEvent) -> None:
        await anyio.to_thread.run_sync(self.publish_sync, event)

    async def aclose(self) -> None:
        await anyio.to_thread.run_sync(self.producer.flush, 5)


def build_order_event_publisher(ks: KafkaSettings) -> Optional[KafkaOrderEventPublisher]:
    """Kafka 关闭时返回 None，订单流程照常，仅不发事件"""
    if not ks.enabled:
        logger.info("order_events_disabled")
        return None
    from confluent_kafka import Producer

    producer = Producer(producer_config(ks))
    logger.info("order_events_enabled", topic=ks.order_topic, bootstrap_servers=ks.bootstrap_servers)
    return KafkaOrderEventPublisher(
        producer,
        ks.order_topic,
        send_wait_s=ks.producer_send_wait_s,
        delivery_wait_s=ks.producer_delivery_wait_s,
    )
