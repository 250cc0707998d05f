"""
Gateway Error Taxonomy

Every failure the gateway can surface carries an explicit ErrorKind so that
callers branch on the kind (and the structured fields) instead of inspecting
exception types.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Kinds of terminal and recoverable gateway failures."""

    TRANSIENT_PROVIDER = "transient_provider"
    PERMANENT_PROVIDER = "permanent_provider"
    QUOTA_EXCEEDED = "quota_exceeded"
    FEATURE_DISABLED = "feature_disabled"
    CONFIGURATION = "configuration"
    CACHE_INFRASTRUCTURE = "cache_infrastructure"


class LimitType(str, Enum):
    """Countable allowances enforced by the quota gate."""

    QUERIES_PER_DAY = "queries_per_day"
    MONTHLY_CREDITS = "monthly_credits"


class GatewayError(Exception):
    """Base class for all gateway errors."""

    kind: ErrorKind = ErrorKind.PERMANENT_PROVIDER
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }


class ProviderError(GatewayError):
    """Failure reported by (or while talking to) the search-data provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limit(self) -> bool:
        return self.status_code == 429

    @property
    def is_credits_exhausted(self) -> bool:
        return self.status_code == 402

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class TransientProviderError(ProviderError):
    """Rate limiting, 5xx or network failure. Retried with backoff."""

    kind = ErrorKind.TRANSIENT_PROVIDER
    retryable = True


class PermanentProviderError(ProviderError):
    """Other 4xx or malformed responses. Never retried."""

    kind = ErrorKind.PERMANENT_PROVIDER
    retryable = False


class QuotaExceededError(GatewayError):
    """A tenant reached its daily query or monthly credit allowance."""

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(self, message: str, limit_type: LimitType, current_usage: int, limit: int):
        super().__init__(message)
        self.limit_type = LimitType(limit_type)
        self.current_usage = current_usage
        self.limit = limit

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "limit_type": self.limit_type.value,
            "current_usage": self.current_usage,
            "limit": self.limit,
        })
        return data


class FeatureDisabledError(GatewayError):
    """The tenant's plan does not include the requested feature."""

    kind = ErrorKind.FEATURE_DISABLED

    def __init__(self, message: str, feature: str):
        super().__init__(message)
        self.feature = feature

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["feature"] = self.feature
        return data


class ConfigurationError(GatewayError):
    """Missing credentials or unusable store configuration. Fatal."""

    kind = ErrorKind.CONFIGURATION


class CacheInfrastructureError(GatewayError):
    """The cache backing store failed. Logged and treated as a miss."""

    kind = ErrorKind.CACHE_INFRASTRUCTURE
