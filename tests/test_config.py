"""
Unit tests for settings and gateway configuration loading.
"""

import pytest

from keyword_gateway.config import GatewayConfig, Settings, reload_config
from keyword_gateway.errors import ConfigurationError, ErrorKind


def test_defaults():
    config = GatewayConfig()

    assert config.max_retries == 3
    assert config.retry_base_delay_sec == 1.0
    assert config.page_size == 1000
    assert config.max_pages == 5
    assert config.cache_ttl_sec == 86400
    assert config.default_plan == "free"
    config.validate()


def test_from_env(monkeypatch):
    monkeypatch.setenv("PROVIDER_MAX_RETRIES", "5")
    monkeypatch.setenv("PROVIDER_PAGE_SIZE", "250")
    monkeypatch.setenv("CACHE_ENABLED", "false")
    monkeypatch.setenv("DEFAULT_PLAN", "Trial")

    config = reload_config()

    assert config.max_retries == 5
    assert config.page_size == 250
    assert config.cache_enabled is False
    assert config.default_plan == "trial"


def test_reload_validates(monkeypatch):
    monkeypatch.setenv("PROVIDER_MAX_PAGES", "0")

    with pytest.raises(ValueError, match="max_pages"):
        reload_config()


@pytest.mark.parametrize("field,value", [
    ("max_retries", -1),
    ("page_size", 0),
    ("inter_page_delay_sec", -0.5),
    ("provider_rate_max_tokens", 0),
    ("provider_rate_refill_per_sec", 0),
    ("cache_ttl_sec", 0),
])
def test_validate_rejects_bad_values(field, value):
    with pytest.raises(ValueError):
        GatewayConfig(**{field: value}).validate()


def test_provider_credentials():
    settings = Settings(_env_file=None, DATAFORSEO_LOGIN="user", DATAFORSEO_PASSWORD="pw")

    credentials = settings.provider_credentials()

    assert credentials.login == "user"
    assert "pw" not in repr(credentials)


def test_missing_credentials_is_configuration_error():
    settings = Settings(_env_file=None, DATAFORSEO_LOGIN=None, DATAFORSEO_PASSWORD=None)

    with pytest.raises(ConfigurationError) as exc_info:
        settings.provider_credentials()
    assert exc_info.value.kind == ErrorKind.CONFIGURATION
