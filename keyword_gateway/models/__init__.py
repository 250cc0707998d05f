"""Database models for the keyword provider gateway."""

from .base import Base
from .usage import UsageCounter
from .cache import CacheEntry
from .provider_log import ProviderUsageLog

__all__ = ["Base", "UsageCounter", "CacheEntry", "ProviderUsageLog"]
