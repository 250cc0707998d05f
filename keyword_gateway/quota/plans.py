"""
Plan Entitlements

Static per-tier limits and feature flags. A limit of -1 means unlimited.
Unknown tiers resolve to the most restrictive plan.
"""

from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Mapping

UNLIMITED = -1


@dataclass(frozen=True)
class PlanFeatures:
    basic_keyword_research: bool = True
    serp_analysis: bool = False
    competitor_analysis: bool = False
    ai_insights: bool = False
    csv_export: bool = False
    api_access: bool = False
    priority_support: bool = False
    custom_integrations: bool = False
    dedicated_account: bool = False

    @classmethod
    def names(cls) -> frozenset:
        return frozenset(f.name for f in fields(cls))

    def is_enabled(self, feature: str) -> bool:
        """
        Raises:
            KeyError: If the feature name is unknown
        """
        if feature not in self.names():
            raise KeyError(f"Unknown feature: {feature}")
        return getattr(self, feature)


@dataclass(frozen=True)
class PlanEntitlement:
    plan_id: str
    plan_name: str
    queries_per_day: int
    monthly_credits: int
    max_rows_per_export: int
    max_depth: int
    features: PlanFeatures = field(default_factory=PlanFeatures)


PLANS: Mapping[str, PlanEntitlement] = MappingProxyType({
    "free": PlanEntitlement(
        plan_id="free",
        plan_name="Free",
        queries_per_day=5,
        monthly_credits=100,
        max_rows_per_export=100,
        max_depth=1,
        features=PlanFeatures(basic_keyword_research=True, csv_export=True),
    ),
    "trial": PlanEntitlement(
        plan_id="trial",
        plan_name="Trial",
        queries_per_day=50,
        monthly_credits=500,
        max_rows_per_export=1000,
        max_depth=3,
        features=PlanFeatures(
            basic_keyword_research=True,
            serp_analysis=True,
            competitor_analysis=True,
            ai_insights=True,
            csv_export=True,
        ),
    ),
    "pro": PlanEntitlement(
        plan_id="pro",
        plan_name="Pro",
        queries_per_day=200,
        monthly_credits=2000,
        max_rows_per_export=10000,
        max_depth=5,
        features=PlanFeatures(
            basic_keyword_research=True,
            serp_analysis=True,
            competitor_analysis=True,
            ai_insights=True,
            csv_export=True,
            api_access=True,
            priority_support=True,
        ),
    ),
    "enterprise": PlanEntitlement(
        plan_id="enterprise",
        plan_name="Enterprise",
        queries_per_day=UNLIMITED,
        monthly_credits=UNLIMITED,
        max_rows_per_export=UNLIMITED,
        max_depth=10,
        features=PlanFeatures(
            basic_keyword_research=True,
            serp_analysis=True,
            competitor_analysis=True,
            ai_insights=True,
            csv_export=True,
            api_access=True,
            priority_support=True,
            custom_integrations=True,
            dedicated_account=True,
        ),
    ),
})

DEFAULT_PLAN_ID = "free"


def get_entitlements(plan_id) -> PlanEntitlement:
    """Look up a plan by id (case-insensitive), falling back to the free plan."""
    if not isinstance(plan_id, str):
        return PLANS[DEFAULT_PLAN_ID]
    return PLANS.get(plan_id.strip().lower(), PLANS[DEFAULT_PLAN_ID])


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def is_over_limit(usage: int, limit: int) -> bool:
    if is_unlimited(limit):
        return False
    return usage >= limit


def usage_percentage(usage: int, limit: int) -> int:
    """Usage as a percentage of the limit, capped at 100 (0 for unlimited)."""
    if is_unlimited(limit):
        return 0
    if limit == 0:
        return 100
    return min(round(usage / limit * 100), 100)


def usage_level(usage: int, limit: int) -> str:
    """'none', 'warning' (>= 80%) or 'critical' (>= 100%)."""
    percentage = usage_percentage(usage, limit)
    if percentage >= 100:
        return "critical"
    if percentage >= 80:
        return "warning"
    return "none"
