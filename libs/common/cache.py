"""Short-TTL read-through cache with explicit invalidation.

The cache is created once per process (see ``build_cache``) and handed to
service functions as an argument, so every write that changes a cached query
result names the key it invalidates.

Values must be JSON-serialisable; callers store ``model_dump(mode="json")``
output and re-validate on read.
"""

import json
import time
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class Cache:
    """Cache capability: get / set / invalidate."""

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def invalidate_prefix(self, prefix: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryTTLCache(Cache):
    """Per-process cache; entries expire lazily on read."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, value)

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def invalidate_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            self._entries.pop(key, None)


class RedisCache(Cache):
    """Redis-backed cache shared by every API process.

    Redis outages degrade to cache misses; the database stays the source of
    truth.
    """

    def __init__(self, url: str, namespace: str = "commerce"):
        self._redis = aioredis.from_url(url, decode_responses=True)
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(self._key(key))
        except RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self._redis.set(self._key(key), json.dumps(value), ex=ttl)
        except RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    async def invalidate(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except RedisError as e:
            logger.warning("Cache invalidation failed for %s: %s", key, e)

    async def invalidate_prefix(self, prefix: str) -> None:
        try:
            keys = [k async for k in self._redis.scan_iter(match=f"{self._key(prefix)}*")]
            if keys:
                await self._redis.delete(*keys)
        except RedisError as e:
            logger.warning("Cache invalidation failed for prefix %s: %s", prefix, e)

    async def close(self) -> None:
        await self._redis.aclose()


def build_cache() -> Cache:
    settings = get_settings()
    if settings.CACHE_BACKEND == "redis":
        logger.info("Using redis cache at %s", settings.REDIS_URL)
        return RedisCache(settings.REDIS_URL)
    return InMemoryTTLCache()
