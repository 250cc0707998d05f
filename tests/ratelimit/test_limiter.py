"""
Unit tests for the token bucket rate limiter.
"""

from unittest.mock import MagicMock

import pytest

from keyword_gateway.config import GatewayConfig
from keyword_gateway.ratelimit.limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
)


@pytest.fixture
def config():
    return GatewayConfig(
        provider_rate_max_tokens=10,
        provider_rate_refill_per_sec=4.0,
        rate_limit_wait_timeout_sec=5.0,
        bucket_idle_ttl_sec=3600.0,
        bucket_purge_interval_sec=300.0,
    )


@pytest.fixture
def limiter(config, clock):
    return RateLimiter(config, clock=clock.time, sleep=clock.sleep)


def test_limiter_initialization(limiter, config):
    assert limiter.config == config
    assert isinstance(limiter.backend, InMemoryRateLimiter)


def test_single_token_bucket_refills_after_one_second(limiter, clock):
    first = limiter.check_rate_limit("provider:a", max_tokens=1, refill_rate_per_sec=1.0)
    second = limiter.check_rate_limit("provider:a", max_tokens=1, refill_rate_per_sec=1.0)

    assert first.allowed is True
    assert second.allowed is False
    assert second.retry_after == pytest.approx(1.0)

    clock.advance(1.0)
    third = limiter.check_rate_limit("provider:a", max_tokens=1, refill_rate_per_sec=1.0)
    assert third.allowed is True


def test_new_bucket_starts_full(limiter):
    result = limiter.check_rate_limit("provider:a")
    assert result.allowed is True
    assert result.remaining == 9


def test_rate_limit_enforcement(limiter):
    for i in range(10):
        assert limiter.check_rate_limit("provider:a").allowed, f"token {i + 1} denied"

    result = limiter.check_rate_limit("provider:a")
    assert result.allowed is False
    assert result.remaining == 0


def test_refill_adds_whole_tokens_only(clock):
    backend = InMemoryRateLimiter(clock=clock.time)
    backend.check("id", max_tokens=2, refill_rate=1.0)
    backend.check("id", max_tokens=2, refill_rate=1.0)

    clock.advance(0.5)
    assert backend.check("id", max_tokens=2, refill_rate=1.0).allowed is False

    # The fractional half second is kept, so another half yields a token
    clock.advance(0.5)
    assert backend.check("id", max_tokens=2, refill_rate=1.0).allowed is True


def test_refill_never_exceeds_capacity(clock):
    backend = InMemoryRateLimiter(clock=clock.time)
    backend.check("id", max_tokens=3, refill_rate=1.0)

    clock.advance(1000)
    result = backend.check("id", max_tokens=3, refill_rate=1.0)
    assert result.remaining == 2


def test_different_identifiers_have_separate_buckets(limiter):
    for _ in range(10):
        limiter.check_rate_limit("provider:a")

    assert limiter.check_rate_limit("provider:a").allowed is False
    assert limiter.check_rate_limit("provider:b").allowed is True


def test_invalid_bucket_parameters(clock):
    backend = InMemoryRateLimiter(clock=clock.time)
    with pytest.raises(ValueError):
        backend.check("id", max_tokens=0, refill_rate=1.0)
    with pytest.raises(ValueError):
        backend.check("id", max_tokens=1, refill_rate=0)


def test_acquire_waits_for_next_token(limiter, clock):
    for _ in range(10):
        limiter.check_rate_limit("provider:a")

    result = limiter.acquire("provider:a")

    assert result.allowed is True
    assert clock.sleeps
    assert clock.total_slept == pytest.approx(0.25)


def test_acquire_times_out(limiter, clock):
    limiter.check_rate_limit("provider:a", max_tokens=1, refill_rate_per_sec=0.01)

    result = limiter.acquire("provider:a", max_tokens=1, refill_rate_per_sec=0.01, timeout=2.0)

    assert result.allowed is False
    assert clock.total_slept == pytest.approx(2.0)


def test_disabled_limiter_always_allows(clock):
    config = GatewayConfig(rate_limit_enabled=False)
    limiter = RateLimiter(config, clock=clock.time, sleep=clock.sleep)

    for _ in range(50):
        assert limiter.check_rate_limit("provider:a", max_tokens=1).allowed is True
    assert limiter.get_status("provider:a") == {"enabled": False}


def test_get_status(limiter):
    assert limiter.get_status("provider:a")["exists"] is False

    limiter.check_rate_limit("provider:a")
    status = limiter.get_status("provider:a")

    assert status["enabled"] is True
    assert status["exists"] is True
    assert status["available_tokens"] == 9


def test_idle_buckets_are_purged(clock):
    backend = InMemoryRateLimiter(clock=clock.time, idle_ttl=60, purge_interval=30)
    backend.check("idle", max_tokens=5, refill_rate=1.0)

    clock.advance(61)
    backend.check("active", max_tokens=5, refill_rate=1.0)

    assert "idle" not in backend.buckets
    assert "active" in backend.buckets


def test_purge_respects_interval(clock):
    backend = InMemoryRateLimiter(clock=clock.time, idle_ttl=10, purge_interval=300)
    backend.check("idle", max_tokens=5, refill_rate=1.0)

    clock.advance(20)
    backend.check("other", max_tokens=5, refill_rate=1.0)
    assert "idle" in backend.buckets

    assert backend.purge_idle() == 1
    assert "idle" not in backend.buckets


def test_retry_after_is_never_negative():
    result = RateLimitResult(allowed=False, remaining=0, reset_at=10.0, checked_at=12.0)
    assert result.retry_after == 0.0


def test_redis_backend_parses_script_result(clock):
    client = MagicMock()
    client.eval.return_value = [1, 4, "1736942400.5"]

    backend = RedisRateLimiter(client, clock=clock.time, idle_ttl=3600)
    result = backend.check("provider:a", max_tokens=5, refill_rate=2.0)

    assert result.allowed is True
    assert result.remaining == 4
    assert result.reset_at == pytest.approx(1736942400.5)
    args = client.eval.call_args.args
    assert args[1:3] == (1, "ratelimit:bucket:provider:a")
    assert args[5] == clock.time()


def test_explicit_backend_overrides_redis_url(config, clock):
    backend = InMemoryRateLimiter(clock=clock.time)
    limiter = RateLimiter(config, backend=backend, redis_url="redis://localhost:6379/0")
    assert limiter.backend is backend
