"""
Shared fixtures: in-memory database, fake clock, scripted provider responses.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from keyword_gateway.config import GatewayConfig
from keyword_gateway.database import init_db
from keyword_gateway.provider.types import ProviderCredentials

# 2025-01-15 12:00:00 UTC
START_EPOCH = 1736942400.0


class FakeClock:
    """Deterministic clock; sleeping advances time instead of blocking."""

    def __init__(self, start: float = START_EPOCH):
        self.current = start
        self.sleeps = []

    def time(self) -> float:
        return self.current

    def monotonic(self) -> float:
        return self.current

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.current, timezone.utc).replace(tzinfo=None)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds

    def advance(self, seconds: float) -> None:
        self.current += seconds

    @property
    def total_slept(self) -> float:
        return sum(self.sleeps)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def gateway_config():
    """Configuration with small pages and the production backoff shape."""
    return GatewayConfig(
        max_retries=3,
        retry_base_delay_sec=1.0,
        retry_max_delay_sec=30.0,
        page_size=100,
        max_pages=5,
        inter_page_delay_sec=0.5,
        provider_rate_max_tokens=10,
        provider_rate_refill_per_sec=2.0,
        rate_limit_wait_timeout_sec=30.0,
        cache_ttl_sec=86400,
    )


@pytest.fixture
def credentials():
    return ProviderCredentials(login="api-user@example.com", password="secret")


@pytest.fixture
def envelope():
    """Build a provider response body holding one task."""

    def build(results=None, cost=0.01, status_code=20000, task_status=20000, status_message="Ok."):
        return {
            "status_code": status_code,
            "status_message": status_message,
            "time": "0.1 sec.",
            "cost": cost,
            "tasks_count": 1,
            "tasks_error": 0 if task_status == 20000 else 1,
            "tasks": [{
                "id": "task-1",
                "status_code": task_status,
                "status_message": status_message,
                "cost": cost,
                "result_count": len(results or []),
                "path": ["v3"],
                "data": {},
                "result": results,
            }],
        }

    return build


@pytest.fixture
def make_response():
    """Build a fake requests.Response."""

    def build(status_code=200, json_data=None, reason="OK", json_error=None):
        response = MagicMock(spec=requests.Response)
        response.status_code = status_code
        response.reason = reason
        if json_error is not None:
            response.json.side_effect = json_error
        else:
            response.json.return_value = json_data
        return response

    return build


@pytest.fixture
def http_session():
    """requests.Session whose post() replays scripted responses via side_effect."""
    return MagicMock(spec=requests.Session)
