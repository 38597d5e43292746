"""
Shared key-value state for the security services.

Provides:
- String values with optional TTL
- Atomic increment (first-sight detection, request counters)
- Prefix scans (sweeps)
- Per-name exclusive locks

Two backends share one interface: an in-process map for single-node use and
tests, and Redis (``redis.asyncio``) when several instances share state.
"""

import asyncio
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

import structlog
from redis.asyncio import Redis

from core.clock import Clock, utc_now

logger = structlog.get_logger(__name__)

LOCK_PREFIX = "lock:"


@runtime_checkable
class KeyValueStore(Protocol):
    """Interface every store backend implements."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int: ...

    async def keys(self, prefix: str) -> list[str]: ...

    def lock(self, name: str) -> AbstractAsyncContextManager[None]: ...

    async def close(self) -> None: ...


class InMemoryKeyValueStore:
    """
    Process-local store.

    Expiry is lazy: an expired key is dropped the next time it is touched.
    Locks are one ``asyncio.Lock`` per name, so they only serialize callers
    in the same event loop. A lock is dropped once no caller holds or awaits it.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._data: dict[str, tuple[str, Optional[datetime]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[datetime]:
        if ttl_seconds is None:
            return None
        return self._clock() + timedelta(seconds=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def delete(self, key: str) -> bool:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return existed

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        current = self._live(key)
        if current is None:
            # TTL starts with the first increment
            count = 1
            expires_at = self._expiry(ttl_seconds)
        else:
            count = int(current) + 1
            expires_at = self._data[key][1]
        self._data[key] = (str(count), expires_at)
        return count

    async def keys(self, prefix: str) -> list[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None]

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users.pop(name, 1) - 1
            if remaining:
                self._lock_users[name] = remaining
            else:
                self._locks.pop(name, None)

    async def close(self) -> None:
        self._data.clear()
        self._locks.clear()
        self._lock_users.clear()


class RedisKeyValueStore:
    """Redis-backed store for multi-instance deployments."""

    def __init__(
        self,
        client: Redis,
        lock_timeout_seconds: float = 10.0,
        blocking_timeout_seconds: Optional[float] = None,
    ):
        self._client = client
        self._lock_timeout = lock_timeout_seconds
        self._blocking_timeout = blocking_timeout_seconds or lock_timeout_seconds

    @classmethod
    def from_url(cls, url: str, lock_timeout_seconds: float = 10.0) -> "RedisKeyValueStore":
        client = Redis.from_url(url, decode_responses=True)
        logger.info("kv_store_initialized", backend="redis")
        return cls(client, lock_timeout_seconds=lock_timeout_seconds)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        if ttl_seconds is None:
            return int(await self._client.incr(key))
        # A new counter is created with its TTL; INCR keeps the TTL of an existing one
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(key, 0, ex=ttl_seconds, nx=True)
            pipe.incr(key)
            _, count = await pipe.execute()
        return int(count)

    async def keys(self, prefix: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=f"{prefix}*")]

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        redis_lock = self._client.lock(
            f"{LOCK_PREFIX}{name}",
            timeout=self._lock_timeout,
            blocking_timeout=self._blocking_timeout,
        )
        async with redis_lock:
            yield

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("kv_store_closed", backend="redis")
