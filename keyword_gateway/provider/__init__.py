"""
Search-Data Provider Access

Single-page client, paginated executor with retry and throttling, usage
logging, and typed helpers for the keyword endpoints.
"""

from .types import ProviderCredentials, ProviderPage, ProviderResponse, ProviderTask
from .client import ProviderClient
from .executor import PaginatedExecutor, PaginatedResult
from .usage_log import ProviderUsageLogger
from .markets import MARKET_LOCATION_MAP, build_task_body, resolve_location_code

__all__ = [
    "ProviderCredentials",
    "ProviderPage",
    "ProviderResponse",
    "ProviderTask",
    "ProviderClient",
    "PaginatedExecutor",
    "PaginatedResult",
    "ProviderUsageLogger",
    "MARKET_LOCATION_MAP",
    "build_task_body",
    "resolve_location_code",
]
