"""
Response Cache

Deterministic keys, TTL-bound entries and pluggable SQL / Redis stores.
"""

from .store import CacheStore, RedisCacheStore, SQLCacheStore, StoredEntry
from .response_cache import (
    CacheLookup,
    ResponseCache,
    generate_cache_key,
    should_bypass_cache,
)

__all__ = [
    "CacheStore",
    "RedisCacheStore",
    "SQLCacheStore",
    "StoredEntry",
    "CacheLookup",
    "ResponseCache",
    "generate_cache_key",
    "should_bypass_cache",
]
