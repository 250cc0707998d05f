"""
End-to-end tests for the provider gateway: quota, cache and provider wired together.
"""

from unittest.mock import MagicMock

import pytest

from keyword_gateway.cache.store import CacheStore
from keyword_gateway.errors import CacheInfrastructureError, ErrorKind, PermanentProviderError
from keyword_gateway.gateway import PROVIDER_UNAVAILABLE_MESSAGE, GatewayResult, build_gateway
from keyword_gateway.models.provider_log import ProviderUsageLog
from keyword_gateway.models.usage import UsageCounter
from keyword_gateway.provider.client import ProviderClient

PATH = "dataforseo_labs/google/ranked_keywords/live"
BODY = {"target": "example.com", "location_code": 2840, "language_code": "en"}


@pytest.fixture
def gateway(gateway_config, credentials, session_factory, clock, http_session):
    return build_gateway(
        config=gateway_config,
        credentials=credentials,
        session_factory=session_factory,
        redis_url="",
        clock=clock.now,
        monotonic=clock.monotonic,
        epoch=clock.time,
        sleep=clock.sleep,
        client=ProviderClient(session=http_session),
    )


@pytest.fixture
def usage(session_factory):
    def read(tenant_id="tenant-1"):
        db = session_factory()
        try:
            row = db.query(UsageCounter).filter_by(tenant_id=tenant_id).one()
            return row.queries_today, row.credits_used_this_month
        finally:
            db.close()

    return read


@pytest.fixture
def provider_ok(http_session, make_response, envelope):
    http_session.post.return_value = make_response(json_data=envelope([{"items": [{"keyword": "seo"}]}]))
    return http_session


def execute(gateway, **kwargs):
    params = dict(tenant_id="tenant-1", operation="ranked_keywords", path=PATH, body=BODY, credits=10)
    params.update(kwargs)
    return gateway.execute(**params)


def test_cache_miss_calls_provider_and_charges(gateway, provider_ok, usage):
    result = execute(gateway)

    assert result.ok is True
    assert result.data == [{"items": [{"keyword": "seo"}]}]
    assert result.cached is False
    assert result.pages_fetched == 1
    assert result.credits_charged == 10
    assert result.usage == {"remaining_queries": 4, "remaining_credits": 90}
    assert usage() == (1, 10)


def test_cache_hit_charges_query_but_not_credits(gateway, provider_ok, usage):
    execute(gateway)
    result = execute(gateway)

    assert result.ok is True
    assert result.cached is True
    assert result.credits_charged == 0
    assert provider_ok.post.call_count == 1
    assert usage() == (2, 10)


def test_different_parameters_miss_the_cache(gateway, provider_ok):
    execute(gateway)
    execute(gateway, page_size=50)

    assert provider_ok.post.call_count == 2


def test_bypass_cache_forces_provider_call(gateway, provider_ok, usage):
    execute(gateway)
    result = execute(gateway, bypass_cache=True)

    assert result.cached is False
    assert provider_ok.post.call_count == 2
    assert usage() == (2, 20)


def test_daily_query_limit_blocks_request(gateway, provider_ok, usage):
    for _ in range(5):
        gateway.quota.reserve_query("tenant-1")

    result = execute(gateway)

    assert result.ok is False
    assert result.error_kind == ErrorKind.QUOTA_EXCEEDED
    assert "5 of 5" in result.message
    provider_ok.post.assert_not_called()
    assert usage() == (5, 0)


def test_insufficient_credits_releases_query(gateway, provider_ok, usage):
    result = execute(gateway, credits=101)

    assert result.ok is False
    assert result.error.limit_type.value == "monthly_credits"
    provider_ok.post.assert_not_called()
    assert usage() == (0, 0)


def test_feature_gate(gateway, provider_ok, usage):
    result = execute(gateway, feature="competitor_analysis")

    assert result.ok is False
    assert result.error_kind == ErrorKind.FEATURE_DISABLED
    provider_ok.post.assert_not_called()

    gateway.quota.set_plan("tenant-1", "trial")
    assert execute(gateway, feature="competitor_analysis").ok is True


def test_provider_outage_releases_reservations(gateway, http_session, make_response, usage, clock):
    http_session.post.return_value = make_response(status_code=503, reason="Service Unavailable")

    result = execute(gateway)

    assert result.ok is False
    assert result.error_kind == ErrorKind.TRANSIENT_PROVIDER
    assert result.message == PROVIDER_UNAVAILABLE_MESSAGE
    assert http_session.post.call_count == 4
    assert clock.sleeps == [1.0, 2.0, 4.0]
    assert usage() == (0, 0)


def test_failed_request_is_not_cached(gateway, http_session, make_response, envelope):
    http_session.post.side_effect = [
        make_response(status_code=400, reason="Bad Request"),
        make_response(json_data=envelope([{"items": []}])),
    ]

    first = execute(gateway)
    second = execute(gateway)

    assert first.error_kind == ErrorKind.PERMANENT_PROVIDER
    assert second.ok is True
    assert second.cached is False


def test_cache_store_failure_is_invisible(gateway, provider_ok, usage):
    store = MagicMock(spec=CacheStore)
    store.get.side_effect = CacheInfrastructureError("down")
    store.set.side_effect = CacheInfrastructureError("down")
    gateway.cache.store = store

    result = execute(gateway)

    assert result.ok is True
    assert usage() == (1, 10)


def test_zero_credit_operation(gateway, provider_ok, usage):
    result = execute(gateway, credits=0)

    assert result.ok is True
    assert usage() == (1, 0)


def test_negative_credits_rejected(gateway):
    with pytest.raises(ValueError):
        execute(gateway, credits=-1)


def test_result_serialization(gateway, provider_ok):
    ok = execute(gateway).to_dict()
    assert ok["ok"] is True
    assert ok["data"] == [{"items": [{"keyword": "seo"}]}]

    for _ in range(5):
        gateway.quota.reserve_query("tenant-1")
    failed = execute(gateway).to_dict()
    assert failed["ok"] is False
    assert failed["error"]["kind"] == "quota_exceeded"
    assert failed["error"]["limit"] == 5


def test_failure_result_message_for_credits_exhausted():
    result = GatewayResult.failure(PermanentProviderError("no credits", status_code=402))
    assert "out of credits" in result.message


def test_components_share_one_wiring(gateway, provider_ok, session_factory):
    execute(gateway)

    status = gateway.executor.rate_limiter.get_status("provider:api-user@example.com")
    assert status["enabled"] is True
    assert status["available_tokens"] == 9
    assert gateway.quota.session_factory is session_factory
    assert gateway.cache.store.session_factory is session_factory
    assert gateway.executor.usage_logger.session_factory is session_factory


def test_usage_log_separates_credits_from_cost(gateway, provider_ok, session_factory):
    execute(gateway, credits=10)

    db = session_factory()
    try:
        row = db.query(ProviderUsageLog).one()
    finally:
        db.close()

    assert row.tenant_id == "tenant-1"
    assert row.module == "ranked_keywords"
    assert row.credits_used == 10
    assert row.cost_usd == pytest.approx(0.01)
