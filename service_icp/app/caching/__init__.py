"""
Lookup caching package.

Provides the cache store shared by token and query caching, its Redis and
in-memory backends, and the tracker that keeps detached cache writes alive
until they finish.
"""

from .backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend, StoredValue
from .background import BackgroundTasks
from .store import CacheStore, CacheStoreStats, build_store

__all__ = [
    "BackgroundTasks",
    "CacheBackend",
    "CacheStore",
    "CacheStoreStats",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "StoredValue",
    "build_store",
]
