"""
Keyword data provider gateway: quota enforcement, response caching,
throttled and retried paginated provider access.
"""

from .errors import (
    CacheInfrastructureError,
    ConfigurationError,
    ErrorKind,
    FeatureDisabledError,
    GatewayError,
    LimitType,
    PermanentProviderError,
    ProviderError,
    QuotaExceededError,
    TransientProviderError,
)
from .gateway import GatewayResult, ProviderGateway, build_gateway, get_gateway

__all__ = [
    "CacheInfrastructureError",
    "ConfigurationError",
    "ErrorKind",
    "FeatureDisabledError",
    "GatewayError",
    "LimitType",
    "PermanentProviderError",
    "ProviderError",
    "QuotaExceededError",
    "TransientProviderError",
    "GatewayResult",
    "ProviderGateway",
    "build_gateway",
    "get_gateway",
]
