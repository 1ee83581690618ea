"""
Redis 客户端 - 命名空间、分布式锁与健康检查
"""
from __future__ import annotations

import asyncio
import socket
from contextlib import asynccontextmanager
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import LockError, RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    redis.asyncio 的轻量封装。

    功能：
    - 所有键按命名空间隔离
    - 分布式锁上下文管理器
    """

    def __init__(self, client: aioredis.Redis, namespace: str = ""):
        self._client = client
        self._namespace = namespace.strip(":")

    def _format_key(self, key: str) -> str:
        """给键加上命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    @asynccontextmanager
    async def lock(
        self,
        key: str,
        timeout: int = 10,
        blocking_timeout: int = 5,
        blocking: bool = True,
    ):
        """
        分布式锁上下文管理器

        Args:
            key: 锁名
            timeout: 锁的有效期（秒）
            blocking_timeout: 等待获取锁的时长（秒）
            blocking: 为 False 时锁被占用立即失败
        """
        lock_key = f"lock:{self._format_key(key)}"
        lock = self._client.lock(
            lock_key,
            timeout=timeout,
            blocking_timeout=blocking_timeout,
            thread_local=False,
        )

        acquired = await lock.acquire(blocking=blocking)
        if not acquired:
            raise TimeoutError(f"Could not acquire lock: {lock_key}")
        try:
            yield lock
        finally:
            try:
                await lock.release()
            except (LockError, RedisError) as e:
                # 释放前锁已过期，持有时间超过了 timeout
                logger.error("redis_lock_release_failed", lock_key=lock_key, error=str(e))

    async def health_check(self) -> bool:
        try:
            return await self._client.ping()
        except RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def client(self) -> aioredis.Redis:
        """原始 redis 客户端（谨慎使用）"""
        return self._client


_cache_instance: Optional[RedisClient] = None
_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    # 并非所有平台都提供细粒度的 keepalive 选项
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        return {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    return {}


async def init_redis_client(namespace: Optional[str] = None, **kwargs) -> RedisClient:
    """创建进程级单例客户端并校验连接"""
    global _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL is not configured")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
            **kwargs,
        )
        try:
            await client.ping()
        except RedisError as e:
            logger.error("redis_init_failed", error=str(e))
            await client.aclose()
            raise

        _cache_instance = RedisClient(
            client=client,
            namespace=namespace or settings.redis.namespace,
        )
        logger.info("redis_client_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def get_redis_client() -> RedisClient:
    if _cache_instance is None:
        return await init_redis_client()
    return _cache_instance


async def shutdown_redis_client() -> None:
    global _cache_instance

    if _cache_instance is not None:
        try:
            await _cache_instance.close()
            logger.info("redis_client_closed")
        except RedisError as e:
            logger.error("redis_close_failed", error=str(e))
        finally:
            _cache_instance = None


__all__ = [
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
