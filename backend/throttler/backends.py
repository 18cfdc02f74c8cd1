"""
Throttle Store Backends

Interchangeable key/value stores with atomic increment-with-TTL:
- MemoryThrottleBackend: thread-safe in-process dict (single process only)
- RedisThrottleBackend: shared across processes via redis.asyncio
- MemcachedThrottleBackend: shared across processes via aiomcache

The backend is picked once from configuration by create_backend().
"""

import logging
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

import aiomcache
from redis.asyncio import Redis

from image_proxy.config import ThrottlerConfig

logger = logging.getLogger(__name__)


class ThrottleBackend(ABC):
    """Key/value store used by the throttler."""

    name: str = "abstract"

    @abstractmethod
    async def incr(self, key: str, ttl: int) -> int:
        """Increment `key`, creating it with `ttl` seconds to live if missing."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether a non-expired `key` exists."""

    @abstractmethod
    async def set(self, key: str, value: int, ttl: int) -> None:
        """Store `value` under `key` for `ttl` seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove `key` if present."""

    async def close(self) -> None:
        """Release connections."""


class MemoryThrottleBackend(ThrottleBackend):
    """
    In-process store with TTL expiry.

    Counters are per process, so limits are only exact with a single worker.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._store: Dict[str, Tuple[int, float]] = {}
        self._lock = Lock()
        self._clock = clock

    def _get_live(self, key: str) -> Optional[Tuple[int, float]]:
        """Return the entry for key unless expired (assumes lock held)."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._store[key]
            return None
        return entry

    async def incr(self, key: str, ttl: int) -> int:
        with self._lock:
            entry = self._get_live(key)
            if entry is None:
                value, expires_at = 1, self._clock() + ttl
            else:
                value, expires_at = entry[0] + 1, entry[1]
            self._store[key] = (value, expires_at)
            return value

    async def exists(self, key: str) -> bool:
        with self._lock:
            return self._get_live(key) is not None

    async def set(self, key: str, value: int, ttl: int) -> None:
        with self._lock:
            self._store[key] = (value, self._clock() + ttl)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def cleanup_expired(self) -> int:
        """
        Drop expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._store.items() if expires_at <= now]
            for k in expired:
                del self._store[k]
            return len(expired)


class RedisThrottleBackend(ThrottleBackend):
    """Redis-backed store shared by every proxy process."""

    name = "redis"

    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisThrottleBackend":
        return cls(Redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def incr(self, key: str, ttl: int) -> int:
        # SET NX EX + INCR in one MULTI so the TTL is set exactly once per window
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=ttl, nx=True)
            pipe.incr(key)
            _, value = await pipe.execute()
        return int(value)

    async def exists(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def set(self, key: str, value: int, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


class MemcachedThrottleBackend(ThrottleBackend):
    """Memcached-backed store shared by every proxy process."""

    name = "memcached"

    def __init__(self, client: aiomcache.Client):
        self._client = client

    @classmethod
    def from_address(cls, host: str, port: int) -> "MemcachedThrottleBackend":
        return cls(aiomcache.Client(host, port))

    async def incr(self, key: str, ttl: int) -> int:
        # add() only succeeds for a new key, so the TTL is set once per window
        k = key.encode()
        await self._client.add(k, b"0", exptime=ttl)
        try:
            return await self._client.incr(k)
        except aiomcache.ClientException:
            # Expired between add and incr
            await self._client.set(k, b"1", exptime=ttl)
            return 1

    async def exists(self, key: str) -> bool:
        return await self._client.get(key.encode()) is not None

    async def set(self, key: str, value: int, ttl: int) -> None:
        await self._client.set(key.encode(), str(value).encode(), exptime=ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(key.encode())

    async def close(self) -> None:
        await self._client.close()


def create_backend(config: ThrottlerConfig) -> ThrottleBackend:
    """
    Build the backend named by config.driver.

    Raises:
        ValueError: Unknown driver
    """
    if config.driver == "redis":
        logger.info("[Throttler] Using redis backend")
        return RedisThrottleBackend.from_url(config.redis_url)
    if config.driver == "memcached":
        logger.info(f"[Throttler] Using memcached backend at {config.memcached_host}:{config.memcached_port}")
        return MemcachedThrottleBackend.from_address(config.memcached_host, config.memcached_port)
    if config.driver == "memory":
        logger.info("[Throttler] Using in-memory backend")
        return MemoryThrottleBackend()
    raise ValueError(f"Unknown throttler driver: {config.driver}")
