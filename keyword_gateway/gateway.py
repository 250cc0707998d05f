"""
Provider Gateway

Single entry point for costed keyword-data requests:

    feature check -> reserve query -> reserve credits
        -> response cache -> paginated provider fetch -> result

Reservations are released when the request fails, and the credit
reservation is released when the response cache answers without calling the
provider. Every terminal failure comes back as a GatewayResult tagged with
its ErrorKind.
"""

import time
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from keyword_gateway.cache.response_cache import ResponseCache, generate_cache_key
from keyword_gateway.cache.store import RedisCacheStore, SQLCacheStore
from keyword_gateway.config import GatewayConfig, load_gateway_config, settings
from keyword_gateway.errors import (
    ErrorKind,
    GatewayError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)
from keyword_gateway.models.base import utcnow
from keyword_gateway.observability.tracing import get_tracer, set_span_error, trace_span
from keyword_gateway.provider.client import ProviderClient
from keyword_gateway.provider.executor import PaginatedExecutor, PaginatedResult
from keyword_gateway.provider.types import ProviderCredentials
from keyword_gateway.provider.usage_log import ProviderUsageLogger
from keyword_gateway.quota.gate import QuotaGate
from keyword_gateway.ratelimit.limiter import RateLimiter
from keyword_gateway.reliability.retry import RetryPolicy

logger = logging.getLogger(__name__)
tracer = get_tracer("gateway")

PROVIDER_UNAVAILABLE_MESSAGE = (
    "The keyword data service is temporarily unavailable. Please try again later."
)
PROVIDER_REJECTED_MESSAGE = "The keyword data service could not process this request."
PROVIDER_CREDITS_MESSAGE = (
    "The keyword data service account is out of credits. Please contact support."
)


def user_message(error: GatewayError) -> str:
    """Message suitable for showing to the end user for a terminal error."""
    if isinstance(error, TransientProviderError):
        return PROVIDER_UNAVAILABLE_MESSAGE
    if isinstance(error, PermanentProviderError):
        return PROVIDER_CREDITS_MESSAGE if error.is_credits_exhausted else PROVIDER_REJECTED_MESSAGE
    return error.message


@dataclass
class GatewayResult:
    """Outcome of ProviderGateway.execute: either data or a typed error."""

    ok: bool
    data: Any = None
    error: Optional[GatewayError] = None
    message: Optional[str] = None
    cached: bool = False
    pages_fetched: int = 0
    attempts: int = 0
    credits_charged: int = 0
    cache_key: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @classmethod
    def failure(cls, error: GatewayError, **kwargs) -> "GatewayResult":
        return cls(ok=False, error=error, message=user_message(error), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ok": self.ok,
            "cached": self.cached,
            "pages_fetched": self.pages_fetched,
            "attempts": self.attempts,
            "credits_charged": self.credits_charged,
        }
        if self.ok:
            data["data"] = self.data
            data["usage"] = self.usage
        else:
            data["error"] = self.error.to_dict()
            data["message"] = self.message
        return data


class ProviderGateway:
    def __init__(
        self,
        config: GatewayConfig,
        credentials: ProviderCredentials,
        quota: QuotaGate,
        cache: ResponseCache,
        executor: PaginatedExecutor,
    ):
        """
        Args:
            config: GatewayConfig instance
            credentials: Provider account credentials
            quota: QuotaGate enforcing tenant entitlements
            cache: ResponseCache in front of the provider
            executor: PaginatedExecutor performing provider calls
        """
        self.config = config
        self.credentials = credentials
        self.quota = quota
        self.cache = cache
        self.executor = executor

    def execute(
        self,
        tenant_id: str,
        operation: str,
        path: str,
        body: Dict[str, Any],
        credits: int = 1,
        feature: Optional[str] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        bypass_cache: bool = False,
    ) -> GatewayResult:
        """
        Run one costed provider request on behalf of a tenant.

        Args:
            tenant_id: Tenant making the request
            operation: Operation name (cache key prefix, usage log module)
            path: Provider endpoint path
            body: Task body without limit/offset
            credits: Credits the request costs when the provider is called
            feature: Plan feature required for the operation, if any
            page_size: Results per page (default: config.page_size)
            max_pages: Page cap (default: config.max_pages)
            bypass_cache: Force a fresh provider call (administrative refresh)

        Returns:
            GatewayResult with the provider results or a typed error
        """
        if credits < 0:
            raise ValueError("credits must be non-negative")

        with trace_span(tracer, "gateway.execute", {
            "gateway.tenant_id": tenant_id,
            "gateway.operation": operation,
            "gateway.credits": credits,
        }) as span:
            if feature:
                access = self.quota.check_feature_access(tenant_id, feature)
                if not access.allowed:
                    return self._reject(tenant_id, operation, access.error)

            query = self.quota.reserve_query(tenant_id)
            if not query.allowed:
                return self._reject(tenant_id, operation, query.error)

            credit = None
            if credits:
                credit = self.quota.reserve_credits(tenant_id, credits)
                if not credit.allowed:
                    self.quota.release_query(tenant_id)
                    return self._reject(tenant_id, operation, credit.error)

            key = generate_cache_key(operation, {
                "path": path,
                "body": body,
                "page_size": page_size,
                "max_pages": max_pages,
            })
            fetched: Dict[str, PaginatedResult] = {}

            def fetch():
                result = self.executor.fetch_paginated(
                    path,
                    body,
                    self.credentials,
                    page_size=page_size,
                    max_pages=max_pages,
                    tenant_id=tenant_id,
                    module=operation,
                    credits=credits,
                )
                fetched["result"] = result
                return result.results

            try:
                lookup = self.cache.lookup(key, fetch, bypass_cache=bypass_cache, tenant_id=tenant_id)
            except ProviderError as e:
                self._release(tenant_id, credits)
                set_span_error(span, e)
                logger.warning(f"Gateway request {operation} failed for tenant={tenant_id}: {e}")
                return GatewayResult.failure(e, cache_key=key)
            except Exception:
                self._release(tenant_id, credits)
                raise

            if lookup.hit and credits:
                self.quota.release_credits(tenant_id, credits)

            charged = 0 if lookup.hit else credits
            result = fetched.get("result")
            usage = {}
            if query.remaining_queries is not None:
                usage["remaining_queries"] = query.remaining_queries
            if credit is not None and credit.remaining_credits is not None:
                usage["remaining_credits"] = credit.remaining_credits + (credits if lookup.hit else 0)

            logger.info(
                f"event=gateway_success tenant={tenant_id} operation={operation} "
                f"cached={lookup.hit} credits={charged}"
            )
            return GatewayResult(
                ok=True,
                data=lookup.value,
                cached=lookup.hit,
                pages_fetched=result.pages_fetched if result else 0,
                attempts=result.attempts if result else 0,
                credits_charged=charged,
                cache_key=key,
                usage=usage,
            )

    def _reject(self, tenant_id: str, operation: str, error: GatewayError) -> GatewayResult:
        logger.info(f"event=gateway_rejected tenant={tenant_id} operation={operation} kind={error.kind.value}")
        return GatewayResult.failure(error)

    def _release(self, tenant_id: str, credits: int) -> None:
        self.quota.release_query(tenant_id)
        if credits:
            self.quota.release_credits(tenant_id, credits)


def build_gateway(
    config: Optional[GatewayConfig] = None,
    credentials: Optional[ProviderCredentials] = None,
    session_factory=None,
    redis_url: Optional[str] = None,
    clock: Callable[[], datetime] = utcnow,
    monotonic: Callable[[], float] = time.monotonic,
    epoch: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
    client: Optional[ProviderClient] = None,
) -> ProviderGateway:
    """
    Wire up a gateway and all of its collaborators.

    Args:
        config: GatewayConfig (default: loaded from the environment)
        credentials: Provider credentials (default: from settings)
        session_factory: SQLAlchemy sessionmaker (default: SessionLocal)
        redis_url: Shared Redis for the throttle and cache (default: settings.REDIS_URL)
        clock: UTC wall clock for quota periods and cache expiry
        monotonic: Clock for elapsed-time measurement
        epoch: Epoch-seconds clock for token buckets
        sleep: Sleep function for backoff, throttling and inter-page delay
        client: ProviderClient (default: one built from settings)

    Raises:
        ConfigurationError: If provider credentials are missing
    """
    config = config or load_gateway_config()
    credentials = credentials or settings.provider_credentials()
    redis_url = redis_url if redis_url is not None else settings.REDIS_URL

    if session_factory is None:
        from keyword_gateway.database import SessionLocal
        session_factory = SessionLocal

    client = client or ProviderClient(
        base_url=settings.DATAFORSEO_BASE_URL,
        timeout=settings.PROVIDER_TIMEOUT_SEC,
    )
    retry_policy = RetryPolicy(
        max_retries=config.max_retries,
        base_delay=config.retry_base_delay_sec,
        max_delay=config.retry_max_delay_sec,
        jitter=config.retry_jitter,
        sleep=sleep,
        clock=monotonic,
    )
    executor = PaginatedExecutor(
        client,
        RateLimiter(config, redis_url=redis_url, clock=epoch, sleep=sleep),
        retry_policy,
        config,
        usage_logger=ProviderUsageLogger(session_factory),
        sleep=sleep,
        clock=monotonic,
    )
    store = RedisCacheStore.from_url(redis_url) if redis_url else SQLCacheStore(session_factory)

    logger.info(f"Provider gateway ready (shared backend: {'redis' if redis_url else 'none'})")
    return ProviderGateway(
        config=config,
        credentials=credentials,
        quota=QuotaGate(config, session_factory=session_factory, clock=clock),
        cache=ResponseCache(config, store=store, clock=clock),
        executor=executor,
    )


# Global gateway instance
_gateway: Optional[ProviderGateway] = None


def get_gateway() -> ProviderGateway:
    """
    Get the global gateway instance.

    Returns:
        ProviderGateway instance
    """
    global _gateway

    if _gateway is None:
        _gateway = build_gateway()

    return _gateway
