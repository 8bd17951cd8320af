"""ARQ (Async Redis Queue) configuration utilities.

Parses the shared REDIS_URL into ARQ-compatible RedisSettings so the
commerce worker and the redis-backed cache point at the same instance.
"""

from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings


def get_redis_settings(redis_url: str | None = None) -> RedisSettings:
    """Parse REDIS_URL (or an explicit URL) into ARQ RedisSettings."""
    parsed = urlparse(redis_url or get_settings().REDIS_URL)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
    )
