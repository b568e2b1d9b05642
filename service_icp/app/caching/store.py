"""
Cache store shared by token and query caching.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from shared.config import BaseConfig
from shared.errors import StoreUnavailableError
from shared.logging import get_logger

from .backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend


@dataclass
class CacheStoreStats:
    """Cache store statistics.

    Attributes:
        reads: Reads that reached the backend
        writes: Successful backend writes
        local_hits: Reads answered by the client-side read cache
        errors: Backend failures
    """

    reads: int = 0
    writes: int = 0
    local_hits: int = 0
    errors: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def record_error(self, error: str) -> None:
        """Record an error."""
        self.errors += 1
        self.last_error = error
        self.last_error_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for health reporting."""
        return {
            "reads": self.reads,
            "writes": self.writes,
            "local_hits": self.local_hits,
            "errors": self.errors,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
        }


class CacheStore:
    """
    Key/value store with a client-side read cache in front of a backend.

    ``get(key, read_ttl)`` may answer from the local read cache for up to
    ``read_ttl`` seconds, but never past the expiry the backend reported
    for the value, so the backend's clock stays authoritative. Misses are
    not cached locally. ``put`` always writes the backend and refreshes any
    local copy of the key.

    There is no locking: concurrent get-miss/put races are accepted and the
    last write wins.
    """

    def __init__(self, backend: CacheBackend, *, clock: Callable[[], float] = time.monotonic):
        self.backend = backend
        self.logger = get_logger("icp.cache.store")
        self._clock = clock
        self._local: Dict[str, Tuple[str, float]] = {}
        self._stats = CacheStoreStats()

    async def get(self, key: str, read_ttl: Optional[float] = None) -> Optional[str]:
        """Get a value, optionally served from the local read cache."""
        now = self._clock()
        if read_ttl:
            local = self._local.get(key)
            if local is not None:
                value, local_expires_at = local
                if local_expires_at > now:
                    self._stats.local_hits += 1
                    return value
                del self._local[key]

        self._stats.reads += 1
        try:
            stored = await self.backend.read(key)
        except StoreUnavailableError as exc:
            self._stats.record_error(exc.message)
            raise

        if stored is None:
            self._local.pop(key, None)
            return None

        if read_ttl:
            lifetime = read_ttl if stored.ttl is None else min(read_ttl, stored.ttl)
            if lifetime > 0:
                self._local[key] = (stored.value, self._clock() + lifetime)
        return stored.value

    async def put(self, key: str, value: str, expiry: int) -> None:
        """Write a value with a backend expiry in seconds."""
        try:
            await self.backend.write(key, value, expiry)
        except StoreUnavailableError as exc:
            self._stats.record_error(exc.message)
            raise

        self._stats.writes += 1
        local = self._local.get(key)
        if local is not None:
            self._local[key] = (value, min(local[1], self._clock() + expiry))
        self.logger.debug("Cached value", key=key, expiry=expiry)

    async def ping(self) -> bool:
        """Check backend reachability."""
        return await self.backend.ping()

    async def close(self) -> None:
        """Close the backend."""
        await self.backend.close()

    def get_stats(self) -> CacheStoreStats:
        """Get store statistics."""
        return self._stats


def build_store(config: BaseConfig) -> CacheStore:
    """Create the cache store selected by ``cache_backend``."""
    if config.cache_backend == "memory":
        return CacheStore(MemoryCacheBackend())
    return CacheStore(RedisCacheBackend(config.redis_url))
