from .redis_client import RedisClient, create_redis_client

__all__ = ["RedisClient", "create_redis_client"]
