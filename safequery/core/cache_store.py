import logging
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from safequery.core.config import settings

logger = logging.getLogger(__name__)


class RedisStore:
    """
    Thin async wrapper around the Redis client.

    The query cache uses the string commands; the sorted-set commands are
    shared with the query history collaborator that lives in the same store.
    Errors propagate to the caller, which decides how to degrade.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        if ttl:
            return bool(await self.client.setex(key, ttl, value))
        return bool(await self.client.set(key, value))

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        return await self.client.mget(keys)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def keys(self, pattern: str) -> List[str]:
        # SCAN instead of KEYS so large keyspaces do not block the server
        return [key async for key in self.client.scan_iter(match=pattern)]

    async def flush_all(self) -> bool:
        await self.client.flushall()
        logger.info("Cache flushed")
        return True

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self.client.expire(key, seconds))

    # Sorted sets (query history)
    async def zadd(self, key: str, score: float, member: str) -> int:
        return await self.client.zadd(key, {member: score})

    async def zrevrange(self, key: str, start: int, stop: int) -> List[str]:
        return await self.client.zrevrange(key, start, stop)

    async def zcard(self, key: str) -> int:
        return await self.client.zcard(key)

    async def zrem(self, key: str, member: str) -> int:
        return await self.client.zrem(key, member)

    async def zremrangebyrank(self, key: str, start: int, stop: int) -> int:
        return await self.client.zremrangebyrank(key, start, stop)

    async def close(self):
        await self.client.aclose()
        logger.info("Redis client closed")


def build_redis_client(url: str = settings.REDIS_URL) -> redis.Redis:
    return redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )


redis_store = RedisStore(build_redis_client())


async def get_redis() -> RedisStore:
    return redis_store
