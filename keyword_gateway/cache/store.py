"""
Cache Stores

Backing stores for the response cache:
- SQLCacheStore: durable table shared by every instance (default)
- RedisCacheStore: SETEX entries that expire server-side

Every backend failure surfaces as CacheInfrastructureError.
"""

import json
import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import redis
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from keyword_gateway.errors import CacheInfrastructureError
from keyword_gateway.models.base import as_naive_utc
from keyword_gateway.models.cache import CacheEntry

logger = logging.getLogger(__name__)


@dataclass
class StoredEntry:
    key: str
    payload: Any
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return as_naive_utc(now) > as_naive_utc(self.expires_at)


def glob_to_like(pattern: str) -> str:
    """Translate a `*` glob to a LIKE pattern, escaping LIKE wildcards."""
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


class CacheStore(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    def get(self, key: str, now: datetime) -> Optional[StoredEntry]:
        """
        Return a live entry or None. Expired entries are removed and reported as None.
        """
        pass

    @abstractmethod
    def set(
        self,
        key: str,
        payload: Any,
        created_at: datetime,
        expires_at: datetime,
        tenant_id: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def invalidate(self, pattern: str) -> int:
        """Delete keys matching a `*` glob. Returns the number removed."""
        pass

    @abstractmethod
    def cleanup_expired(self, now: datetime) -> int:
        pass


class SQLCacheStore(CacheStore):
    """Cache rows in the response_cache table."""

    def __init__(self, session_factory=None):
        if session_factory is None:
            from keyword_gateway.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    def get(self, key: str, now: datetime) -> Optional[StoredEntry]:
        now = as_naive_utc(now)
        db = self.session_factory()
        try:
            row = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one_or_none()
            if row is None:
                return None

            if now > as_naive_utc(row.expires_at):
                db.delete(row)
                db.commit()
                logger.debug(f"Evicted expired cache entry {key}")
                return None

            row.hit_count = (row.hit_count or 0) + 1
            row.last_hit_at = now
            db.commit()

            return StoredEntry(
                key=row.key,
                payload=row.payload,
                created_at=row.created_at,
                expires_at=row.expires_at,
                hit_count=row.hit_count,
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheInfrastructureError(f"Cache read failed for {key}: {e}") from e
        finally:
            db.close()

    def set(
        self,
        key: str,
        payload: Any,
        created_at: datetime,
        expires_at: datetime,
        tenant_id: Optional[str] = None,
    ) -> None:
        db = self.session_factory()
        try:
            self._upsert(db, key, payload, created_at, expires_at, tenant_id)
            try:
                db.commit()
            except IntegrityError:
                # Concurrent writer inserted the same key
                db.rollback()
                self._upsert(db, key, payload, created_at, expires_at, tenant_id)
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheInfrastructureError(f"Cache write failed for {key}: {e}") from e
        finally:
            db.close()

    @staticmethod
    def _upsert(db, key, payload, created_at, expires_at, tenant_id) -> None:
        row = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one_or_none()
        if row is None:
            row = CacheEntry(key=key, hit_count=0)
            db.add(row)
        row.payload = payload
        row.tenant_id = tenant_id
        row.created_at = as_naive_utc(created_at)
        row.expires_at = as_naive_utc(expires_at)
        row.last_hit_at = None
        row.hit_count = 0

    def delete(self, key: str) -> bool:
        return self._delete_where(CacheEntry.key == key) > 0

    def invalidate(self, pattern: str) -> int:
        if "*" not in pattern:
            return self._delete_where(CacheEntry.key == pattern)
        return self._delete_where(CacheEntry.key.like(glob_to_like(pattern), escape="\\"))

    def cleanup_expired(self, now: datetime) -> int:
        return self._delete_where(CacheEntry.expires_at < as_naive_utc(now))

    def _delete_where(self, condition) -> int:
        db = self.session_factory()
        try:
            removed = db.execute(
                delete(CacheEntry).where(condition).execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
            return removed or 0
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheInfrastructureError(f"Cache delete failed: {e}") from e
        finally:
            db.close()


class RedisCacheStore(CacheStore):
    """
    Cache entries as JSON strings written with SETEX.

    Redis expires keys on its own clock; entries also carry expires_at so a
    lookup never returns a stale payload.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "cache:"):
        """
        Args:
            redis_client: redis.Redis instance (decode_responses=True)
            prefix: Namespace prepended to every key
        """
        self.redis = redis_client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisCacheStore":
        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str, now: datetime) -> Optional[StoredEntry]:
        try:
            raw = self.redis.get(self._key(key))
            if raw is None:
                return None

            data = json.loads(raw)
            entry = StoredEntry(
                key=key,
                payload=data["payload"],
                created_at=datetime.fromisoformat(data["created_at"]),
                expires_at=datetime.fromisoformat(data["expires_at"]),
            )
            if entry.is_expired(now):
                self.redis.delete(self._key(key))
                return None
            return entry
        except (redis.RedisError, ValueError, KeyError) as e:
            raise CacheInfrastructureError(f"Cache read failed for {key}: {e}") from e

    def set(
        self,
        key: str,
        payload: Any,
        created_at: datetime,
        expires_at: datetime,
        tenant_id: Optional[str] = None,
    ) -> None:
        ttl = max(1, math.ceil((as_naive_utc(expires_at) - as_naive_utc(created_at)).total_seconds()))
        try:
            value = json.dumps({
                "payload": payload,
                "tenant_id": tenant_id,
                "created_at": as_naive_utc(created_at).isoformat(),
                "expires_at": as_naive_utc(expires_at).isoformat(),
            })
            self.redis.setex(self._key(key), ttl, value)
        except (redis.RedisError, TypeError, ValueError) as e:
            raise CacheInfrastructureError(f"Cache write failed for {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(self._key(key)))
        except redis.RedisError as e:
            raise CacheInfrastructureError(f"Cache delete failed for {key}: {e}") from e

    def invalidate(self, pattern: str) -> int:
        try:
            keys = list(self.redis.scan_iter(match=self._key(pattern)))
            if not keys:
                return 0
            return self.redis.delete(*keys)
        except redis.RedisError as e:
            raise CacheInfrastructureError(f"Cache invalidation failed for {pattern}: {e}") from e

    def cleanup_expired(self, now: datetime) -> int:
        # SETEX entries expire server-side
        return 0
