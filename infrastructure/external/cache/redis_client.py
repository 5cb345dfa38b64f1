"""
Redis客户端（redis.asyncio）

当前用途：支付 webhook 事件去重（SET NX + TTL）。缓存故障不阻断业务流程，
下游结算本身按订单幂等。
"""
from __future__ import annotations

import socket

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from application.ports.webhook_deduplicator import WebhookDeduplicator
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisClient(WebhookDeduplicator):
    """带命名空间前缀的轻量 Redis 客户端"""

    def __init__(self, client: aioredis.Redis, namespace: str = "", default_ttl: int = 300):
        self._client = client
        self._namespace = namespace.strip(":")
        self._default_ttl = default_ttl

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def first_seen(self, key: str, ttl_seconds: int) -> bool:
        formatted_key = self._format_key(key)
        expire = ttl_seconds if ttl_seconds > 0 else self._default_ttl
        try:
            created = await self._client.set(formatted_key, "1", ex=expire, nx=True)
        except RedisError as e:
            # Redis 不可用时放行事件，由结算的幂等条件兜底
            logger.warning("webhook_dedupe_unavailable", key=formatted_key, error=str(e))
            return True
        return bool(created)

    async def close(self) -> None:
        await self._client.aclose()


async def create_redis_client(
    url: str,
    *,
    namespace: str = "",
    max_connections: int = 10,
    default_ttl: int = 300,
) -> RedisClient:
    """创建 Redis 客户端并检测连通性"""
    keepalive_opts = {}
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        keepalive_opts = {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    client = aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
        socket_keepalive=True,
        socket_keepalive_options=keepalive_opts,
    )
    await client.ping()
    logger.info("redis_connected", namespace=namespace)
    return RedisClient(client, namespace=namespace, default_ttl=default_ttl)


__all__ = ["RedisClient", "create_redis_client"]
