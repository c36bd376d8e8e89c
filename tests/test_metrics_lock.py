"""Tests for the Redis metrics lock."""

import pytest
import redis.asyncio as redis

from health_engine.config import settings
from health_engine.worker.metrics_lock import RedisMetricsLock


async def _redis_available() -> bool:
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


async def _fresh_lock() -> RedisMetricsLock:
    lock = RedisMetricsLock(redis_url=settings.redis_url, lock_key=99000001, ttl_seconds=30)
    client = await lock._get_redis()
    await client.delete(lock.key)
    return lock


@pytest.mark.asyncio
async def test_lock_acquire_release():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = await _fresh_lock()
    try:
        token = await lock.acquire("test_run_lock")
        assert token is not None
        assert await lock.acquire("test_run_other") is None

        assert await lock.release("test_run_lock", token) is True
        assert await lock.acquire("test_run_other") is not None
    finally:
        client = await lock._get_redis()
        await client.delete(lock.key)
        await lock.close()


@pytest.mark.asyncio
async def test_lock_token_mismatch():
    if not await _redis_available():
        pytest.skip("Redis not available")

    lock = await _fresh_lock()
    try:
        token = await lock.acquire("test_run_token")
        assert token is not None

        assert await lock.release("test_run_token", "bad_token") is False
        assert await lock.release("test_run_token", None) is False
        assert await lock.acquire("test_run_other") is None
    finally:
        client = await lock._get_redis()
        await client.delete(lock.key)
        await lock.close()
