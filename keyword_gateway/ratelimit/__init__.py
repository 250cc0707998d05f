"""
Outbound Rate Limiting

Token bucket throttling for provider calls, keyed by identifier, with an
in-memory (per-process) backend and a Redis (shared) backend.
"""

from .limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RateLimiterBackend,
    RateLimitResult,
    RedisRateLimiter,
)

__all__ = [
    "InMemoryRateLimiter",
    "RateLimiter",
    "RateLimiterBackend",
    "RateLimitResult",
    "RedisRateLimiter",
]
