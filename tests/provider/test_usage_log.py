"""
Unit tests for provider usage logging.
"""

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from keyword_gateway.models.provider_log import ProviderUsageLog
from keyword_gateway.provider.usage_log import ProviderUsageLogger


def test_log_persists_row(session_factory):
    ProviderUsageLogger(session_factory).log(
        module="ranked_keywords",
        endpoint="labs/live",
        response_status=200,
        tenant_id="tenant-1",
        attempts=2,
        credits_used=0.3,
        cost_usd=0.3,
    )

    db = session_factory()
    try:
        row = db.query(ProviderUsageLog).one()
    finally:
        db.close()

    assert row.module == "ranked_keywords"
    assert row.response_status == 200
    assert row.attempts == 2
    assert row.error_message is None


def test_log_failure_does_not_propagate():
    session = MagicMock()
    session.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

    ProviderUsageLogger(lambda: session).log(module="m", endpoint="e", response_status=500)

    session.rollback.assert_called_once()
    session.close.assert_called_once()
