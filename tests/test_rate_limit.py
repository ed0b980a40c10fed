"""Tests for the Redis fixed-window RateLimiter (fakeredis)."""

from __future__ import annotations

import time

from src.crm.core.redis import RateLimiter


async def test_allows_up_to_limit(fake_redis):
    limiter = RateLimiter(fake_redis)

    results = [await limiter.hit("forgot:a@example.com", limit=3, window_seconds=3600) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].reset_at > time.time()


async def test_keys_are_independent(fake_redis):
    limiter = RateLimiter(fake_redis)
    for _ in range(3):
        await limiter.hit("forgot:a@example.com", limit=3, window_seconds=3600)

    other = await limiter.hit("forgot:b@example.com", limit=3, window_seconds=3600)

    assert other.allowed is True


async def test_window_expiry_is_set(fake_redis):
    limiter = RateLimiter(fake_redis, prefix="test")
    await limiter.hit("k", limit=1, window_seconds=60)

    ttl = await fake_redis.ttl("test:k")
    assert 0 < ttl <= 60


async def test_reset_clears_counter(fake_redis):
    limiter = RateLimiter(fake_redis)
    await limiter.hit("k", limit=1, window_seconds=60)
    await limiter.reset("k")

    assert (await limiter.hit("k", limit=1, window_seconds=60)).allowed is True


async def test_counter_without_expiry_gets_one(fake_redis):
    limiter = RateLimiter(fake_redis)
    await fake_redis.set("rl:k", 1)

    result = await limiter.hit("k", limit=5, window_seconds=60)

    assert result.allowed is True
    assert await fake_redis.ttl("rl:k") > 0
