"""Retry policies for provider calls."""

from .retry import RetryOutcome, RetryPolicy, exponential_backoff, retry_with_backoff

__all__ = ["RetryOutcome", "RetryPolicy", "exponential_backoff", "retry_with_backoff"]
