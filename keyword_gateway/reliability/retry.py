"""
Retry Policy

Exponential backoff retry as a reusable component: attempt cap, backoff
function and retryable-error predicate are all configurable, and sleeping and
timekeeping are injected so the policy can be exercised without real waits.
"""

import time
import random
import logging
import functools
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Type

from keyword_gateway.errors import TransientProviderError

logger = logging.getLogger(__name__)


def exponential_backoff(base_delay: float, factor: float = 2.0) -> Callable[[int], float]:
    """Backoff function returning base_delay * factor ** attempt."""
    def backoff(attempt: int) -> float:
        return base_delay * (factor ** attempt)
    return backoff


@dataclass
class RetryOutcome:
    """Result of a call made under a RetryPolicy."""

    value: Any
    attempts: int
    elapsed: float
    delays: List[float] = field(default_factory=list)


class RetryPolicy:
    """
    Retries a callable on retryable errors with exponential backoff.

    A call is attempted at most max_retries + 1 times. After failed attempt
    number n (0-based) the policy waits backoff(n), capped at max_delay.
    Errors that are not retryable propagate immediately; once retries are
    exhausted the last error propagates.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff: Optional[Callable[[int], float]] = None,
        retry_on: Tuple[Type[BaseException], ...] = (TransientProviderError,),
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        jitter: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            max_retries: Retries after the first attempt
            base_delay: Delay before the first retry (seconds)
            max_delay: Upper bound for any single delay (seconds)
            backoff: Function of the 0-based attempt returning the delay;
                defaults to base_delay * 2 ** attempt
            retry_on: Exception types considered retryable
            should_retry: Optional extra predicate applied to retryable errors
            jitter: Add up to base_delay of random jitter to each delay
            sleep: Sleep function
            clock: Monotonic clock used to measure elapsed time
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff = backoff or exponential_backoff(base_delay)
        self.retry_on = tuple(retry_on)
        self.should_retry = should_retry
        self.jitter = jitter
        self.sleep = sleep
        self.clock = clock

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable(self, error: BaseException) -> bool:
        if not isinstance(error, self.retry_on):
            return False
        if self.should_retry is not None:
            return self.should_retry(error)
        return True

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (0-based)."""
        delay = self.backoff(attempt)
        if self.jitter:
            delay += random.random() * self.base_delay
        return min(delay, self.max_delay)

    def call(
        self,
        func: Callable[[], Any],
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        name: Optional[str] = None,
    ) -> RetryOutcome:
        """
        Call `func` under this policy.

        Args:
            func: Zero-argument callable
            on_retry: Called with (attempt, error, delay) before each backoff wait
            name: Label used in log messages

        Returns:
            RetryOutcome with the value, number of attempts and elapsed time
        """
        start = self.clock()
        delays: List[float] = []
        name = name or getattr(func, "__name__", "call")

        for attempt in range(self.max_attempts):
            try:
                value = func()
                return RetryOutcome(
                    value=value,
                    attempts=attempt + 1,
                    elapsed=self.clock() - start,
                    delays=delays,
                )
            except Exception as e:
                if not self.is_retryable(e):
                    raise

                if attempt + 1 >= self.max_attempts:
                    logger.error(f"{name} failed after {self.max_attempts} attempts: {e}")
                    raise

                delay = self.compute_delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_attempts} failed for {name}: {e}. "
                    f"Retrying in {delay:.2f}s"
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay)

                delays.append(delay)
                self.sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without a result")


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    retry_on: Optional[List[Type[Exception]]] = None,
    jitter: bool = False,
):
    """
    Decorator for exponential backoff retry logic.

    Args:
        max_retries: Retries after the first attempt.
        initial_delay: Initial delay in seconds.
        max_delay: Maximum delay in seconds.
        backoff_factor: Multiplier for the delay.
        retry_on: Exception types to retry on. Defaults to TransientProviderError.
        jitter: Whether to add random jitter to the delay.
    """
    policy = RetryPolicy(
        max_retries=max_retries,
        base_delay=initial_delay,
        max_delay=max_delay,
        backoff=exponential_backoff(initial_delay, backoff_factor),
        retry_on=tuple(retry_on) if retry_on else (TransientProviderError,),
        jitter=jitter,
    )

    def decorator(func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return policy.call(lambda: func(*args, **kwargs), name=func.__name__).value

        wrapper.retry_policy = policy
        return wrapper
    return decorator
