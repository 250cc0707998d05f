"""
Gateway Configuration

Two layers, loaded from the environment:
- Settings: deployment settings (database, redis, provider credentials)
- GatewayConfig: tunables for retries, pagination, throttling and caching
"""

import os
from dataclasses import dataclass
from typing import Optional

from pydantic_settings import BaseSettings

from keyword_gateway.errors import ConfigurationError
from keyword_gateway.provider.types import ProviderCredentials


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./keyword_gateway.db"

    # Shared rate limiter / cache backend (optional)
    REDIS_URL: str | None = None

    # Search-data provider
    DATAFORSEO_LOGIN: str | None = None
    DATAFORSEO_PASSWORD: str | None = None
    DATAFORSEO_BASE_URL: str = "https://api.dataforseo.com/v3"
    PROVIDER_TIMEOUT_SEC: float = 60.0

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    def provider_credentials(self) -> ProviderCredentials:
        """
        Build provider credentials from the environment.

        Raises:
            ConfigurationError: If login or password is missing
        """
        if not self.DATAFORSEO_LOGIN or not self.DATAFORSEO_PASSWORD:
            raise ConfigurationError(
                "Provider credentials not configured: set DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD"
            )
        return ProviderCredentials(login=self.DATAFORSEO_LOGIN, password=self.DATAFORSEO_PASSWORD)


settings = Settings()


@dataclass
class GatewayConfig:
    """Tunables for the provider gateway."""

    # Retry policy
    max_retries: int = 3
    retry_base_delay_sec: float = 1.0
    retry_max_delay_sec: float = 30.0
    retry_jitter: bool = False

    # Pagination
    page_size: int = 1000
    max_pages: int = 5
    inter_page_delay_sec: float = 0.5

    # Outbound throttle (token bucket per provider account)
    rate_limit_enabled: bool = True
    provider_rate_max_tokens: int = 10
    provider_rate_refill_per_sec: float = 2.0
    rate_limit_wait_timeout_sec: float = 30.0
    bucket_idle_ttl_sec: float = 3600.0
    bucket_purge_interval_sec: float = 300.0

    # Response cache
    cache_enabled: bool = True
    cache_ttl_sec: int = 86400

    # Quota
    default_plan: str = "free"

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        """Load configuration from environment variables."""
        return cls(
            max_retries=int(os.getenv("PROVIDER_MAX_RETRIES", "3")),
            retry_base_delay_sec=float(os.getenv("PROVIDER_RETRY_BASE_DELAY_SEC", "1.0")),
            retry_max_delay_sec=float(os.getenv("PROVIDER_RETRY_MAX_DELAY_SEC", "30.0")),
            retry_jitter=os.getenv("PROVIDER_RETRY_JITTER", "false").lower() == "true",

            page_size=int(os.getenv("PROVIDER_PAGE_SIZE", "1000")),
            max_pages=int(os.getenv("PROVIDER_MAX_PAGES", "5")),
            inter_page_delay_sec=float(os.getenv("PROVIDER_INTER_PAGE_DELAY_SEC", "0.5")),

            rate_limit_enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
            provider_rate_max_tokens=int(os.getenv("PROVIDER_RATE_MAX_TOKENS", "10")),
            provider_rate_refill_per_sec=float(os.getenv("PROVIDER_RATE_REFILL_PER_SEC", "2.0")),
            rate_limit_wait_timeout_sec=float(os.getenv("RATE_LIMIT_WAIT_TIMEOUT_SEC", "30.0")),
            bucket_idle_ttl_sec=float(os.getenv("BUCKET_IDLE_TTL_SEC", "3600")),
            bucket_purge_interval_sec=float(os.getenv("BUCKET_PURGE_INTERVAL_SEC", "300")),

            cache_enabled=os.getenv("CACHE_ENABLED", "true").lower() == "true",
            cache_ttl_sec=int(os.getenv("CACHE_TTL_SEC", "86400")),

            default_plan=os.getenv("DEFAULT_PLAN", "free").lower(),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        if self.retry_base_delay_sec < 0 or self.retry_max_delay_sec < 0:
            raise ValueError("retry delays must be non-negative")

        if self.page_size <= 0:
            raise ValueError("page_size must be positive")

        if self.max_pages <= 0:
            raise ValueError("max_pages must be positive")

        if self.inter_page_delay_sec < 0:
            raise ValueError("inter_page_delay_sec must be non-negative")

        if self.provider_rate_max_tokens <= 0:
            raise ValueError("provider_rate_max_tokens must be positive")

        if self.provider_rate_refill_per_sec <= 0:
            raise ValueError("provider_rate_refill_per_sec must be positive")

        if self.cache_ttl_sec <= 0:
            raise ValueError("cache_ttl_sec must be positive")


# Global configuration instance
_config: Optional[GatewayConfig] = None


def load_gateway_config() -> GatewayConfig:
    """
    Load and return the global gateway configuration.

    Returns:
        GatewayConfig instance loaded from environment variables
    """
    global _config

    if _config is None:
        _config = GatewayConfig.from_env()
        _config.validate()

    return _config


def reload_config() -> GatewayConfig:
    """
    Force reload configuration from environment variables.
    Useful for testing or dynamic reconfiguration.
    """
    global _config
    _config = GatewayConfig.from_env()
    _config.validate()
    return _config
