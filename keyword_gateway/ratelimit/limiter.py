"""
Token Bucket Rate Limiter

Throttles outbound provider calls per identifier with pluggable backends:
- In-memory backend (default): per-process buckets, idle buckets purged lazily
- Redis backend (optional): buckets shared by every instance of the service

Buckets refill lazily on each check, in whole tokens, and start full.
"""

import math
import time
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis

from keyword_gateway.observability.metrics import record_rate_limit_wait, update_bucket_tokens

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of a single throttle check."""

    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds at which the next token becomes available
    checked_at: float = 0.0

    @property
    def retry_after(self) -> float:
        """Seconds until the next token is available."""
        return max(0.0, self.reset_at - self.checked_at)


@dataclass
class TokenBucket:
    tokens: int
    last_refill: float
    last_seen: float


class RateLimiterBackend(ABC):
    """Abstract base class for rate limiter backends."""

    @abstractmethod
    def check(self, identifier: str, max_tokens: int, refill_rate: float) -> RateLimitResult:
        """
        Refill the identifier's bucket and try to spend one token.

        Args:
            identifier: Bucket identifier (e.g. "provider:<login>")
            max_tokens: Bucket capacity
            refill_rate: Tokens added per second

        Returns:
            RateLimitResult
        """
        pass

    @abstractmethod
    def get_status(self, identifier: str) -> Dict[str, Any]:
        """Get current status of the identifier's bucket."""
        pass

    def purge_idle(self) -> int:
        """Drop idle buckets. Returns the number removed."""
        return 0


class InMemoryRateLimiter(RateLimiterBackend):
    """In-memory token bucket rate limiter (per-process)."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        idle_ttl: float = 3600.0,
        purge_interval: float = 300.0,
    ):
        """
        Args:
            clock: Returns the current time in epoch seconds
            idle_ttl: Buckets unused for longer than this are purged (seconds)
            purge_interval: Minimum spacing between opportunistic purges (seconds)
        """
        self.clock = clock
        self.idle_ttl = idle_ttl
        self.purge_interval = purge_interval
        self.buckets: Dict[str, TokenBucket] = {}
        self.lock = threading.Lock()
        self._last_purge = clock()

    @staticmethod
    def _refill(bucket: TokenBucket, now: float, max_tokens: int, refill_rate: float) -> None:
        """Add whole tokens for the time elapsed since the last refill."""
        elapsed = max(0.0, now - bucket.last_refill)
        tokens_to_add = math.floor(elapsed * refill_rate)

        if tokens_to_add <= 0:
            return

        if bucket.tokens + tokens_to_add >= max_tokens:
            bucket.tokens = max_tokens
            bucket.last_refill = now
        else:
            bucket.tokens += tokens_to_add
            # Keep the fractional progress towards the next token
            bucket.last_refill += tokens_to_add / refill_rate

    def check(self, identifier: str, max_tokens: int, refill_rate: float) -> RateLimitResult:
        if max_tokens <= 0 or refill_rate <= 0:
            raise ValueError("max_tokens and refill_rate must be positive")

        with self.lock:
            now = self.clock()
            self._maybe_purge(now)

            bucket = self.buckets.get(identifier)
            if bucket is None:
                bucket = TokenBucket(tokens=max_tokens, last_refill=now, last_seen=now)
                self.buckets[identifier] = bucket
            else:
                self._refill(bucket, now, max_tokens, refill_rate)

            bucket.last_seen = now
            next_token_at = bucket.last_refill + 1.0 / refill_rate

            if bucket.tokens > 0:
                if bucket.tokens == max_tokens:
                    # A full bucket does not accrue; the refill clock starts now
                    bucket.last_refill = now
                    next_token_at = now + 1.0 / refill_rate
                bucket.tokens -= 1
                return RateLimitResult(
                    allowed=True,
                    remaining=bucket.tokens,
                    reset_at=next_token_at if bucket.tokens < max_tokens else now,
                    checked_at=now,
                )

            return RateLimitResult(allowed=False, remaining=0, reset_at=next_token_at, checked_at=now)

    def _maybe_purge(self, now: float) -> None:
        if now - self._last_purge < self.purge_interval:
            return
        self._purge(now)

    def _purge(self, now: float) -> int:
        idle = [key for key, bucket in self.buckets.items() if now - bucket.last_seen > self.idle_ttl]
        for key in idle:
            del self.buckets[key]
        self._last_purge = now
        if idle:
            logger.info(f"Purged {len(idle)} idle rate limit buckets")
        return len(idle)

    def purge_idle(self) -> int:
        with self.lock:
            return self._purge(self.clock())

    def get_status(self, identifier: str) -> Dict[str, Any]:
        with self.lock:
            bucket = self.buckets.get(identifier)
            if bucket is None:
                return {"exists": False}

            return {
                "exists": True,
                "available_tokens": bucket.tokens,
                "last_refill_ts": bucket.last_refill,
                "last_seen_ts": bucket.last_seen,
            }


class RedisRateLimiter(RateLimiterBackend):
    """Redis-backed token bucket rate limiter (shared across instances)."""

    # Atomic refill-and-spend. Mirrors InMemoryRateLimiter.check; idle buckets
    # expire through the key TTL.
    LUA_CHECK = """
    local key = KEYS[1]
    local max_tokens = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local idle_ttl = tonumber(ARGV[4])

    local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1])
    local last_refill = tonumber(bucket[2])

    if tokens == nil then
        tokens = max_tokens
        last_refill = now
    else
        local elapsed = math.max(0, now - last_refill)
        local to_add = math.floor(elapsed * refill_rate)
        if to_add > 0 then
            if tokens + to_add >= max_tokens then
                tokens = max_tokens
                last_refill = now
            else
                tokens = tokens + to_add
                last_refill = last_refill + to_add / refill_rate
            end
        end
    end

    local allowed = 0
    if tokens > 0 then
        if tokens == max_tokens then
            last_refill = now
        end
        tokens = tokens - 1
        allowed = 1
    end

    local reset_at = last_refill + 1 / refill_rate
    if allowed == 1 and tokens == max_tokens then
        reset_at = now
    end

    redis.call('HSET', key, 'tokens', tostring(tokens), 'last_refill', tostring(last_refill))
    redis.call('EXPIRE', key, idle_ttl)
    return {allowed, tokens, tostring(reset_at)}
    """

    def __init__(self, redis_client, clock: Callable[[], float] = time.time, idle_ttl: float = 3600.0):
        """
        Args:
            redis_client: redis.Redis instance (decode_responses=True)
            clock: Returns the current time in epoch seconds
            idle_ttl: Key expiry for idle buckets (seconds)
        """
        self.redis_client = redis_client
        self.clock = clock
        self.idle_ttl = int(idle_ttl)

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisRateLimiter":
        client = redis.from_url(redis_url, decode_responses=True)
        logger.info(f"Redis rate limiter initialized: {redis_url}")
        return cls(client, **kwargs)

    @staticmethod
    def _get_bucket_key(identifier: str) -> str:
        return f"ratelimit:bucket:{identifier}"

    def check(self, identifier: str, max_tokens: int, refill_rate: float) -> RateLimitResult:
        if max_tokens <= 0 or refill_rate <= 0:
            raise ValueError("max_tokens and refill_rate must be positive")

        now = self.clock()
        allowed, tokens, reset_at = self.redis_client.eval(
            self.LUA_CHECK,
            1,
            self._get_bucket_key(identifier),
            max_tokens,
            refill_rate,
            now,
            self.idle_ttl,
        )

        return RateLimitResult(
            allowed=int(allowed) == 1,
            remaining=int(tokens),
            reset_at=float(reset_at),
            checked_at=now,
        )

    def get_status(self, identifier: str) -> Dict[str, Any]:
        bucket = self.redis_client.hgetall(self._get_bucket_key(identifier))
        if not bucket:
            return {"exists": False}

        return {
            "exists": True,
            "available_tokens": int(float(bucket["tokens"])),
            "last_refill_ts": float(bucket["last_refill"]),
        }


class RateLimiter:
    """
    Main rate limiter class with pluggable backends.

    Automatically selects backend based on configuration:
    - Redis backend if redis_url is provided
    - In-memory backend otherwise
    """

    def __init__(
        self,
        config,
        backend: Optional[RateLimiterBackend] = None,
        redis_url: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            config: GatewayConfig instance
            backend: Explicit backend (overrides redis_url)
            redis_url: Redis connection URL for the shared backend
            clock: Returns the current time in epoch seconds
            sleep: Sleep function used while waiting for tokens
        """
        self.config = config
        self.clock = clock
        self.sleep = sleep

        if backend is not None:
            self.backend = backend
        elif redis_url:
            logger.info("Using Redis rate limiter backend")
            self.backend = RedisRateLimiter.from_url(redis_url, clock=clock, idle_ttl=config.bucket_idle_ttl_sec)
        else:
            logger.info("Using in-memory rate limiter backend")
            self.backend = InMemoryRateLimiter(
                clock=clock,
                idle_ttl=config.bucket_idle_ttl_sec,
                purge_interval=config.bucket_purge_interval_sec,
            )

    def check_rate_limit(
        self,
        identifier: str,
        max_tokens: Optional[int] = None,
        refill_rate_per_sec: Optional[float] = None,
    ) -> RateLimitResult:
        """
        Spend one token from the identifier's bucket if one is available.

        Args:
            identifier: Bucket identifier
            max_tokens: Bucket capacity (default: config.provider_rate_max_tokens)
            refill_rate_per_sec: Refill rate (default: config.provider_rate_refill_per_sec)

        Returns:
            RateLimitResult with allowed, remaining and reset_at
        """
        max_tokens = max_tokens or self.config.provider_rate_max_tokens
        refill_rate_per_sec = refill_rate_per_sec or self.config.provider_rate_refill_per_sec

        if not self.config.rate_limit_enabled:
            now = self.clock()
            return RateLimitResult(allowed=True, remaining=max_tokens, reset_at=now, checked_at=now)

        result = self.backend.check(identifier, max_tokens, refill_rate_per_sec)
        update_bucket_tokens(identifier, result.remaining)
        return result

    def acquire(
        self,
        identifier: str,
        max_tokens: Optional[int] = None,
        refill_rate_per_sec: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> RateLimitResult:
        """
        Wait until a token is available or the timeout expires.

        Args:
            identifier: Bucket identifier
            max_tokens: Bucket capacity
            refill_rate_per_sec: Refill rate
            timeout: Maximum time to wait in seconds (default: config.rate_limit_wait_timeout_sec)

        Returns:
            The last RateLimitResult; allowed is False if the wait timed out
        """
        timeout = self.config.rate_limit_wait_timeout_sec if timeout is None else timeout
        deadline = self.clock() + timeout

        while True:
            result = self.check_rate_limit(identifier, max_tokens, refill_rate_per_sec)
            if result.allowed:
                return result

            remaining_wait = deadline - self.clock()
            if remaining_wait <= 0:
                logger.warning(f"Timed out waiting for rate limit token: {identifier}")
                return result

            wait = min(max(result.retry_after, 0.01), remaining_wait)
            logger.info(f"Rate limited on {identifier}, waiting {wait:.2f}s for next token")
            record_rate_limit_wait(identifier)
            self.sleep(wait)

    def purge_idle(self) -> int:
        return self.backend.purge_idle()

    def get_status(self, identifier: str) -> Dict[str, Any]:
        if not self.config.rate_limit_enabled:
            return {"enabled": False}

        status = self.backend.get_status(identifier)
        status["enabled"] = True
        return status
