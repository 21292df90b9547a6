"""Query result caching."""

from __future__ import annotations

from .backends import CacheBackend, CacheSettings, FileCache, MemoryCache, RedisCache, create_cache
from .query_cache import DEFAULT_TTL, QueryCache

__all__ = [
    "CacheBackend",
    "CacheSettings",
    "DEFAULT_TTL",
    "FileCache",
    "MemoryCache",
    "QueryCache",
    "RedisCache",
    "create_cache",
]
