"""
Unit tests for the retry policy and decorator.
"""

from unittest.mock import MagicMock

import pytest

from keyword_gateway.errors import PermanentProviderError, TransientProviderError
from keyword_gateway.reliability.retry import RetryPolicy, exponential_backoff, retry_with_backoff


@pytest.fixture
def policy(clock):
    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=30.0, sleep=clock.sleep, clock=clock.monotonic)


def test_succeeds_after_two_transient_failures(policy, clock):
    func = MagicMock(side_effect=[
        TransientProviderError("HTTP 503", status_code=503),
        TransientProviderError("HTTP 503", status_code=503),
        {"ok": True},
    ])

    outcome = policy.call(func)

    assert outcome.value == {"ok": True}
    assert outcome.attempts == 3
    assert outcome.delays == [1.0, 2.0]
    assert outcome.elapsed >= 3.0
    assert func.call_count == 3


def test_exhaustion_raises_last_error(policy, clock):
    errors = [TransientProviderError(f"HTTP 500 #{i}", status_code=500) for i in range(4)]
    func = MagicMock(side_effect=errors)

    with pytest.raises(TransientProviderError) as exc_info:
        policy.call(func)

    assert exc_info.value is errors[-1]
    assert func.call_count == 4
    assert clock.sleeps == [1.0, 2.0, 4.0]


def test_permanent_error_is_not_retried(policy, clock):
    func = MagicMock(side_effect=PermanentProviderError("HTTP 400", status_code=400))

    with pytest.raises(PermanentProviderError):
        policy.call(func)

    assert func.call_count == 1
    assert clock.sleeps == []


def test_unexpected_exception_propagates(policy):
    func = MagicMock(side_effect=KeyError("boom"))

    with pytest.raises(KeyError):
        policy.call(func)
    assert func.call_count == 1


def test_delay_is_capped(clock):
    policy = RetryPolicy(max_retries=10, base_delay=1.0, max_delay=5.0, sleep=clock.sleep)
    assert [policy.compute_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_stays_within_bounds(clock):
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=True, sleep=clock.sleep)
    for attempt in range(4):
        delay = policy.compute_delay(attempt)
        assert 2 ** attempt <= delay <= 2 ** attempt + 1.0


def test_zero_retries_means_single_attempt(clock):
    policy = RetryPolicy(max_retries=0, sleep=clock.sleep)
    func = MagicMock(side_effect=TransientProviderError("HTTP 429", status_code=429))

    with pytest.raises(TransientProviderError):
        policy.call(func)
    assert func.call_count == 1


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)


def test_should_retry_predicate(clock):
    policy = RetryPolicy(
        max_retries=3,
        should_retry=lambda e: e.status_code != 503,
        sleep=clock.sleep,
    )
    func = MagicMock(side_effect=TransientProviderError("HTTP 503", status_code=503))

    with pytest.raises(TransientProviderError):
        policy.call(func)
    assert func.call_count == 1


def test_on_retry_callback(policy):
    seen = []
    func = MagicMock(side_effect=[TransientProviderError("HTTP 429", status_code=429), "done"])

    policy.call(func, on_retry=lambda attempt, error, delay: seen.append((attempt, error.status_code, delay)))

    assert seen == [(0, 429, 1.0)]


def test_exponential_backoff_factor():
    backoff = exponential_backoff(0.5, factor=3.0)
    assert [backoff(n) for n in range(3)] == [0.5, 1.5, 4.5]


def test_decorator_retries_transient_errors():
    calls = MagicMock(side_effect=[TransientProviderError("HTTP 502", status_code=502), 42])

    @retry_with_backoff(max_retries=2, initial_delay=0.5)
    def fetch():
        return calls()

    sleep = MagicMock()
    fetch.retry_policy.sleep = sleep

    assert fetch() == 42
    assert calls.call_count == 2
    sleep.assert_called_once_with(0.5)
    assert fetch.__name__ == "fetch"
