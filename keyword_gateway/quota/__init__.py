"""
Credit / Quota Gate

Plan entitlements and per-tenant usage counters.
"""

from .plans import (
    PLANS,
    UNLIMITED,
    PlanEntitlement,
    PlanFeatures,
    get_entitlements,
    is_over_limit,
    is_unlimited,
    usage_level,
    usage_percentage,
)
from .gate import QuotaGate, UsageCheck

__all__ = [
    "PLANS",
    "UNLIMITED",
    "PlanEntitlement",
    "PlanFeatures",
    "get_entitlements",
    "is_over_limit",
    "is_unlimited",
    "usage_level",
    "usage_percentage",
    "QuotaGate",
    "UsageCheck",
]
