"""Redis connection pool and the fixed-window rate limiter built on it."""

from __future__ import annotations

import time

import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel

from src.crm.config import get_settings

logger = structlog.get_logger(__name__)

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ── Rate Limiting ───────────────────────────────────────────────────────────


class RateLimitResult(BaseModel):
    """Outcome of a single rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string.

    The first hit in a window creates the counter with an expiry equal to
    the window; later hits only increment it. Keys are namespaced under
    ``rl:`` so they can be inspected or flushed as a group.
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "rl") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        """Count one attempt against ``key`` and report whether it is allowed."""
        redis_key = self._key(key)
        count = await self._redis.incr(redis_key)
        if count == 1:
            await self._redis.expire(redis_key, window_seconds)
            ttl = window_seconds
        else:
            ttl = await self._redis.ttl(redis_key)
            if ttl < 0:
                # Counter lost its expiry; restart the window.
                await self._redis.expire(redis_key, window_seconds)
                ttl = window_seconds

        allowed = count <= limit
        if not allowed:
            logger.info("rate_limit.exceeded", key=key, count=count, limit=limit)
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=time.time() + ttl,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(self._key(key))
