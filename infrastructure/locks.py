"""
Keyed lock providers

``RedisKeyedLock`` serializes across processes; ``InProcessKeyedLock`` is used
when no Redis is configured and only guards a single process.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.logging_config import get_logger
from infrastructure.external.cache.redis_client import RedisClient, init_redis_client


logger = get_logger(__name__)


class InProcessKeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it"""

    def __init__(self, blocking_timeout: Optional[float] = None) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}
        self._blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, key: str, *, wait: bool = True) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if not wait:
                if lock.locked():
                    raise TimeoutError(f"Lock is held: {key}")
                await lock.acquire()
            elif self._blocking_timeout is None:
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), self._blocking_timeout)
                except asyncio.TimeoutError:
                    raise TimeoutError(f"Could not acquire lock: {key}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    async def aclose(self) -> None:
        self._locks.clear()
        self._waiters.clear()


class RedisKeyedLock:
    """Distributed lock per key backed by redis-py's Lock"""

    def __init__(self, redis: RedisClient, *, timeout: int = 60, blocking_timeout: int = 30) -> None:
        self._redis = redis
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, key: str, *, wait: bool = True) -> AsyncIterator[None]:
        async with self._redis.lock(
            key,
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
            blocking=wait,
        ):
            yield

    async def aclose(self) -> None:
        # the shared redis client is closed by the lifespan
        return None


async def build_keyed_lock(redis_url: Optional[str], *, timeout: int, blocking_timeout: int):
    """Redis-backed lock when Redis is configured, in-process lock otherwise"""
    if redis_url:
        redis = await init_redis_client()
        logger.info("keyed_lock_provider", backend="redis")
        return RedisKeyedLock(redis, timeout=timeout, blocking_timeout=blocking_timeout)
    logger.info("keyed_lock_provider", backend="memory")
    return InProcessKeyedLock(blocking_timeout=float(blocking_timeout))
