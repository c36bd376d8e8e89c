"""Distributed lock guarding the nightly platform metrics snapshot.

Three interchangeable backends share one interface:

    token = await lock.acquire(run_id)   # None when another run holds it
    await lock.release(run_id, token)

- ``RedisMetricsLock``: SET NX EX with a token-verified Lua unlock
- ``PostgresAdvisoryLock``: pg_try_advisory_lock on a dedicated connection
- ``InProcessMetricsLock``: asyncio.Lock, single process only
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Dict, Optional
from uuid import uuid4

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from health_engine.config import settings

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "platform_metrics:lock"

# Returns: 0 = not found/already released, 1 = deleted, 2 = mismatch
SAFE_UNLOCK_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 2
end
"""


class RedisMetricsLock:
    """
    Snapshot lock held in Redis.

    The TTL bounds how long a crashed run can block the next one.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        lock_key: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.key = f"{LOCK_KEY_PREFIX}:{lock_key or settings.metrics_lock_key}"
        self.ttl_seconds = ttl_seconds or settings.metrics_lock_ttl_seconds
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def acquire(self, run_id: str) -> Optional[str]:
        """
        Try to take the lock without waiting.

        Returns:
            Token string if acquired, None if already held
        """
        redis_client = await self._get_redis()

        token = uuid4().hex
        lock_value = json.dumps({
            "run_id": run_id,
            "token": token,
            "started_at": datetime.utcnow().isoformat(),
        })
        acquired = await redis_client.set(self.key, lock_value, nx=True, ex=self.ttl_seconds)
        if acquired:
            logger.info(f"Acquired metrics lock for run_id: {run_id[:16]}...")
            return token

        existing_value = await redis_client.get(self.key)
        if existing_value:
            try:
                holder = json.loads(existing_value).get("run_id", "unknown")
                logger.debug(f"Metrics lock already held by run_id: {holder[:16]}...")
            except (json.JSONDecodeError, AttributeError):
                logger.warning(f"Metrics lock exists but value is invalid: {existing_value}")
        return None

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        """Delete the lock only if it still carries our run_id and token."""
        if not token:
            logger.warning("Unlock requested without token; refusing")
            return False

        redis_client = await self._get_redis()
        result = await redis_client.eval(SAFE_UNLOCK_SCRIPT, 1, self.key, run_id, token)

        if result == 0:
            logger.debug("Metrics lock already released")
            return True
        if result == 1:
            logger.info(f"Released metrics lock for run_id: {run_id[:16]}...")
            return True
        logger.warning(
            f"Attempted to release metrics lock with mismatched token/run_id: "
            f"requested={run_id[:16]}..."
        )
        return False


class PostgresAdvisoryLock:
    """
    Session-level advisory lock.

    The lock lives on the connection that took it, so each acquisition checks
    out a dedicated connection and keeps it until release.
    """

    def __init__(self, engine: AsyncEngine, lock_key: Optional[int] = None):
        self.engine = engine
        self.lock_key = lock_key or settings.metrics_lock_key
        self._connections: Dict[str, AsyncConnection] = {}

    async def acquire(self, run_id: str) -> Optional[str]:
        conn = await self.engine.connect()
        try:
            result = await conn.execute(
                text("SELECT pg_try_advisory_lock(:key)"), {"key": self.lock_key}
            )
            acquired = bool(result.scalar())
        except Exception:
            await conn.close()
            raise

        if not acquired:
            await conn.close()
            logger.debug(f"Advisory lock {self.lock_key} held by another session")
            return None

        token = uuid4().hex
        self._connections[token] = conn
        logger.info(f"Acquired advisory lock {self.lock_key} for run_id: {run_id[:16]}...")
        return token

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        conn = self._connections.pop(token, None) if token else None
        if conn is None:
            logger.warning(f"No advisory lock connection for run_id: {run_id[:16]}...")
            return False

        try:
            await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": self.lock_key})
            await conn.commit()
            logger.info(f"Released advisory lock {self.lock_key} for run_id: {run_id[:16]}...")
            return True
        except Exception as e:
            # Never hand a connection still holding the lock back to the pool
            logger.error(f"Failed to release advisory lock {self.lock_key}: {e}")
            await conn.invalidate()
            return False
        finally:
            await conn.close()

    async def close(self):
        for token in list(self._connections):
            await self.release("shutdown", token)


class InProcessMetricsLock:
    """Non-blocking asyncio.Lock; only excludes runs within this process."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._holder: Optional[str] = None

    async def acquire(self, run_id: str) -> Optional[str]:
        if self._lock.locked():
            return None
        await self._lock.acquire()
        self._holder = uuid4().hex
        return self._holder

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        if not self._lock.locked() or token != self._holder:
            return False
        self._holder = None
        self._lock.release()
        return True

    async def close(self):
        pass


def build_metrics_lock(engine: Optional[AsyncEngine] = None):
    """Create the lock backend named by ``settings.metrics_lock_backend``."""
    backend = settings.metrics_lock_backend.lower()
    if backend == "postgres":
        if engine is None:
            from health_engine.db.session import engine as default_engine
            engine = default_engine
        return PostgresAdvisoryLock(engine)
    if backend == "memory":
        return InProcessMetricsLock()
    if backend != "redis":
        logger.warning(f"Unknown metrics lock backend {backend!r}; using redis")
    return RedisMetricsLock()
