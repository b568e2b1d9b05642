"""
Backing stores for the lookup cache.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import StoreUnavailableError
from shared.logging import get_logger


@dataclass(frozen=True)
class StoredValue:
    """A value read from a backend with its remaining expiry in seconds."""

    value: str
    ttl: Optional[float] = None


class CacheBackend(ABC):
    """
    Minimal key/value contract with write-set expiration.

    Backends never retry. Unavailability surfaces as StoreUnavailableError
    to whoever issued the read or write.
    """

    name = "backend"

    @abstractmethod
    async def read(self, key: str) -> Optional[StoredValue]:
        """Return the stored value or None when absent or expired."""

    @abstractmethod
    async def write(self, key: str, value: str, expiry: int) -> None:
        """Store ``value`` under ``key`` for ``expiry`` seconds."""

    async def ping(self) -> bool:
        """Return True when the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release connections."""


class RedisCacheBackend(CacheBackend):
    """Redis backend; expiry is enforced by Redis itself."""

    name = "redis"

    def __init__(self, redis_url: Optional[str] = None, *, client: Optional[redis.Redis] = None):
        if client is None and redis_url is None:
            raise ValueError("redis_url or client is required")
        self.redis_url = redis_url
        self.logger = get_logger("icp.cache.redis")
        self._redis = client or redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

    async def read(self, key: str) -> Optional[StoredValue]:
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                value, pttl = await pipe.get(key).pttl(key).execute()
        except RedisError as exc:
            self.logger.error("Redis read failed", key=key, error=str(exc))
            raise StoreUnavailableError(details={"key": key, "error": str(exc)}) from exc

        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        # -1 means no expiry, -2 means the key vanished between GET and PTTL
        ttl = pttl / 1000.0 if pttl is not None and pttl >= 0 else None
        return StoredValue(value=value, ttl=ttl)

    async def write(self, key: str, value: str, expiry: int) -> None:
        try:
            await self._redis.set(key, value, ex=expiry)
        except RedisError as exc:
            self.logger.error("Redis write failed", key=key, error=str(exc))
            raise StoreUnavailableError(details={"key": key, "error": str(exc)}) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            self.logger.error("Redis health check failed", error=str(exc))
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryCacheBackend(CacheBackend):
    """
    In-process backend with passive expiry.

    Expired entries are dropped when read. ``clock`` is injectable so tests
    can move time forward without sleeping.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    async def read(self, key: str) -> Optional[StoredValue]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        remaining = expires_at - self._clock()
        if remaining <= 0:
            del self._data[key]
            return None
        return StoredValue(value=value, ttl=remaining)

    async def write(self, key: str, value: str, expiry: int) -> None:
        self._data[key] = (value, self._clock() + expiry)

    def keys(self):
        """Keys currently held, expired or not."""
        return list(self._data.keys())

    def __repr__(self) -> str:
        return f"MemoryCacheBackend(entries={len(self._data)})"
