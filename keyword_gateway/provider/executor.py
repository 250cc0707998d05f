"""
Paginated Request Executor

Turns one logical provider request into one or more page fetches:
- every page fetch is throttled by the rate limiter and wrapped in the retry policy
- pagination stops on a short page or after max_pages, whichever comes first
- a fresh call always starts again from offset 0
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from keyword_gateway.errors import ProviderError, TransientProviderError
from keyword_gateway.observability.metrics import (
    record_pages_fetched,
    record_provider_call,
    record_provider_retry,
    record_request_latency,
)
from keyword_gateway.observability.tracing import get_tracer, trace_span
from keyword_gateway.provider.client import ProviderClient
from keyword_gateway.provider.types import ProviderCredentials, ProviderPage
from keyword_gateway.provider.usage_log import ProviderUsageLogger
from keyword_gateway.ratelimit.limiter import RateLimiter
from keyword_gateway.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)
tracer = get_tracer("provider.executor")


@dataclass
class PaginatedResult:
    """All results of a paginated fetch plus accounting for the round trips."""

    results: List[Any] = field(default_factory=list)
    pages_fetched: int = 0
    attempts: int = 0
    total_cost: float = 0.0
    elapsed: float = 0.0

    def __iter__(self) -> Iterator[Any]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)


class PaginatedExecutor:
    def __init__(
        self,
        client: ProviderClient,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy,
        config,
        usage_logger: Optional[ProviderUsageLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            client: ProviderClient for single page fetches
            rate_limiter: RateLimiter throttling every provider call
            retry_policy: RetryPolicy applied to every page fetch
            config: GatewayConfig (page size, page cap, inter-page delay, bucket shape)
            usage_logger: Optional ProviderUsageLogger
            sleep: Sleep function for the inter-page delay
            clock: Monotonic clock used to measure elapsed time
        """
        self.client = client
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.config = config
        self.usage_logger = usage_logger
        self.sleep = sleep
        self.clock = clock

    @staticmethod
    def throttle_identifier(credentials: ProviderCredentials) -> str:
        return f"provider:{credentials.login}"

    def fetch_paginated(
        self,
        path: str,
        body: Dict[str, Any],
        credentials: ProviderCredentials,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        tenant_id: Optional[str] = None,
        module: Optional[str] = None,
        credits: int = 0,
    ) -> PaginatedResult:
        """
        Fetch up to max_pages pages of `path`.

        Args:
            path: Provider endpoint path
            body: Task body without limit/offset
            credentials: Provider credentials
            page_size: Results per page (default: config.page_size)
            max_pages: Page cap (default: config.max_pages)
            tenant_id: Tenant on whose behalf the call is made (usage log only)
            module: Calling feature name (usage log only)
            credits: Tenant credits charged for a successful fetch (usage log only)

        Returns:
            PaginatedResult

        Raises:
            TransientProviderError: Retries exhausted on a page
            PermanentProviderError: Non-retryable provider failure
        """
        page_size = page_size or self.config.page_size
        max_pages = max_pages or self.config.max_pages
        if page_size <= 0 or max_pages <= 0:
            raise ValueError("page_size and max_pages must be positive")

        module = module or path
        result = PaginatedResult()
        start = self.clock()

        with trace_span(tracer, "provider.fetch_paginated", {
            "provider.path": path,
            "provider.page_size": page_size,
            "provider.max_pages": max_pages,
        }) as span:
            for page_number in range(max_pages):
                offset = page_number * page_size
                try:
                    outcome = self.retry_policy.call(
                        lambda: self._fetch_page(path, body, credentials, page_size, offset, result),
                        on_retry=lambda attempt, error, delay: record_provider_retry(path),
                        name=f"provider page {page_number} of {path}",
                    )
                except ProviderError as e:
                    self._log_usage(
                        module, path, tenant_id,
                        response_status=e.status_code or 0,
                        attempts=result.attempts,
                        cost_usd=result.total_cost,
                        error_message=str(e),
                    )
                    raise

                page: ProviderPage = outcome.value
                result.results.extend(page.results)
                result.pages_fetched += 1
                result.total_cost += page.cost

                has_more = len(page.results) == page_size
                if not has_more:
                    break

                if page_number + 1 < max_pages:
                    # Courtesy wait between pages
                    self.sleep(self.config.inter_page_delay_sec)

            result.elapsed = self.clock() - start
            if span is not None and span.is_recording():
                span.set_attribute("provider.pages_fetched", result.pages_fetched)
                span.set_attribute("provider.results", len(result.results))

        record_pages_fetched(path, result.pages_fetched)
        logger.info(
            f"Fetched {len(result.results)} results from {path} "
            f"in {result.pages_fetched} page(s), {result.attempts} attempt(s)"
        )
        self._log_usage(
            module, path, tenant_id,
            response_status=200,
            attempts=result.attempts,
            credits_used=credits,
            cost_usd=result.total_cost,
        )
        return result

    def _fetch_page(
        self,
        path: str,
        body: Dict[str, Any],
        credentials: ProviderCredentials,
        page_size: int,
        offset: int,
        result: PaginatedResult,
    ) -> ProviderPage:
        """One throttled provider round trip."""
        result.attempts += 1

        identifier = self.throttle_identifier(credentials)
        permit = self.rate_limiter.acquire(
            identifier,
            self.config.provider_rate_max_tokens,
            self.config.provider_rate_refill_per_sec,
        )
        if not permit.allowed:
            raise TransientProviderError(f"Outbound throttle wait timed out for {identifier}", status_code=429)

        started = self.clock()
        try:
            page = self.client.fetch_page(path, body, credentials, limit=page_size, offset=offset)
        except TransientProviderError:
            record_provider_call(path, "transient")
            raise
        except ProviderError:
            record_provider_call(path, "permanent")
            raise
        finally:
            record_request_latency(path, (self.clock() - started) * 1000)

        record_provider_call(path, "ok")
        return page

    def _log_usage(self, module: str, endpoint: str, tenant_id: Optional[str], **fields) -> None:
        if self.usage_logger is None:
            return
        self.usage_logger.log(module=module, endpoint=endpoint, tenant_id=tenant_id, **fields)
