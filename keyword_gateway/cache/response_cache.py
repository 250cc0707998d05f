"""
Response Cache

Content-addressed, TTL-bound cache in front of paid provider calls.

- Keys are derived from the operation name plus canonicalized parameters,
  so parameter ordering never changes the key
- A hit returns the stored payload without calling the fetcher
- Store failures fail open: logged, counted, and served via the fetcher
"""

import json
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from opentelemetry import trace

from keyword_gateway.errors import CacheInfrastructureError
from keyword_gateway.models.base import as_naive_utc, utcnow
from keyword_gateway.observability.metrics import record_cache_event
from keyword_gateway.observability.tracing import add_span_attributes
from keyword_gateway.cache.store import CacheStore, SQLCacheStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_HASH_LENGTH = 16


def _encode_value(value: Any) -> Any:
    # Sets have no stable iteration order across processes
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=canonical_json)
    raise TypeError(f"Cache key parameter of type {type(value).__name__} is not JSON serializable")


def canonical_json(params: Any) -> str:
    """
    JSON with keys sorted at every depth and no insignificant whitespace.

    Sets are emitted as sorted lists. Any other non-JSON value raises TypeError.
    """
    return json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_encode_value)


def generate_cache_key(operation: str, params: Dict[str, Any]) -> str:
    """
    Deterministic cache key for an operation and its parameters.

    Args:
        operation: Operation name, used as the key prefix
        params: Parameter mapping; nested mappings are normalized too

    Returns:
        "<operation>:<first 16 hex chars of sha256(canonical params)>"
    """
    digest = hashlib.sha256(canonical_json(params).encode("utf-8")).hexdigest()
    return f"{operation}:{digest[:KEY_HASH_LENGTH]}"


def should_bypass_cache(is_admin: bool, force_refresh: bool = False) -> bool:
    """Only administrators may force a refresh past the cache."""
    return is_admin and force_refresh


@dataclass
class CacheLookup(Generic[T]):
    """A value served by the cache layer and whether it came from the store."""

    value: T
    hit: bool


class ResponseCache:
    def __init__(
        self,
        config,
        store: Optional[CacheStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            config: GatewayConfig instance (cache_enabled, cache_ttl_sec)
            store: Backing CacheStore (default: SQLCacheStore)
            clock: Returns the current UTC time
        """
        self.config = config
        self.store = store or SQLCacheStore()
        self.clock = clock

    def _now(self) -> datetime:
        return as_naive_utc(self.clock())

    def get(self, key: str) -> Optional[Any]:
        """Stored payload for key, or None on miss, expiry or store failure."""
        entry = self._read(key)
        return None if entry is None else entry.payload

    def _read(self, key: str):
        try:
            return self.store.get(key, self._now())
        except CacheInfrastructureError as e:
            logger.warning(f"event=cache_error op=read key={key} error={e}")
            record_cache_event("error")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None, tenant_id: Optional[str] = None) -> bool:
        """
        Store a payload for `ttl` seconds (default: config.cache_ttl_sec).

        Returns:
            True if stored
        """
        now = self._now()
        expires_at = now + timedelta(seconds=ttl or self.config.cache_ttl_sec)
        try:
            self.store.set(key, value, now, expires_at, tenant_id=tenant_id)
            logger.info(f"event=cache_set key={key} expires_at={expires_at.isoformat()}")
            return True
        except CacheInfrastructureError as e:
            logger.warning(f"event=cache_error op=write key={key} error={e}")
            record_cache_event("error")
            return False

    def lookup(
        self,
        key: str,
        fetcher: Callable[[], T],
        bypass_cache: bool = False,
        ttl: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> CacheLookup[T]:
        """
        Serve `key` from the cache or via `fetcher`, reporting which one answered.

        Bypassing skips the read but still stores the fresh result.
        Exceptions from the fetcher propagate unchanged.
        """
        if not self.config.cache_enabled:
            return CacheLookup(value=fetcher(), hit=False)

        if bypass_cache:
            logger.info(f"event=cache_bypass key={key}")
            record_cache_event("bypass")
        else:
            entry = self._read(key)
            if entry is not None:
                logger.info(f"event=cache_hit key={key}")
                record_cache_event("hit")
                add_span_attributes(trace.get_current_span(), {"cache.key": key, "cache.hit": True})
                return CacheLookup(value=entry.payload, hit=True)

            logger.info(f"event=cache_miss key={key}")
            record_cache_event("miss")

        value = fetcher()
        add_span_attributes(trace.get_current_span(), {"cache.key": key, "cache.hit": False})

        if value is not None:
            self.set(key, value, ttl=ttl, tenant_id=tenant_id)

        return CacheLookup(value=value, hit=False)

    def with_cache(
        self,
        key: str,
        fetcher: Callable[[], T],
        bypass_cache: bool = False,
        ttl: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> T:
        """
        Return the cached payload for `key`, or call `fetcher` and cache its result.

        Args:
            key: Cache key (see generate_cache_key)
            fetcher: Zero-argument callable producing the payload
            bypass_cache: Skip the lookup (administrative force refresh)
            ttl: Entry lifetime in seconds (default: config.cache_ttl_sec)
            tenant_id: Tenant recorded on the stored entry

        Returns:
            The cached or freshly fetched payload
        """
        return self.lookup(key, fetcher, bypass_cache=bypass_cache, ttl=ttl, tenant_id=tenant_id).value

    def invalidate(self, pattern: str) -> int:
        """Delete entries whose key matches `pattern` (`*` matches any run of characters)."""
        try:
            removed = self.store.invalidate(pattern)
        except CacheInfrastructureError as e:
            logger.error(f"Cache invalidation failed: {e}")
            return 0

        logger.info(f"Invalidated {removed} cache entries matching {pattern}")
        return removed

    def cleanup_expired(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        try:
            removed = self.store.cleanup_expired(self._now())
        except CacheInfrastructureError as e:
            logger.error(f"Cache cleanup failed: {e}")
            return 0

        if removed:
            logger.info(f"Removed {removed} expired cache entries")
        return removed
