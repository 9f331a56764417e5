"""Redis connection management and the fixed-window counter behind rate limiting."""

from __future__ import annotations

import redis.asyncio as redis

from tenantry.core.config import get_settings

settings = get_settings()

_redis_pool: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


async def hit_fixed_window(client: redis.Redis, key: str, window_seconds: int) -> int:
    """Count one hit against `key`; the window starts at the first hit.

    INCR and EXPIRE go out in one MULTI block so a key can never be left
    without a TTL. NX keeps later hits from pushing the window forward.
    """
    async with client.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        count, _ = await pipe.execute()
    return count
