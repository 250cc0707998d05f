"""
Unit tests for plan entitlements and usage helpers.
"""

import pytest

from keyword_gateway.quota.plans import (
    PLANS,
    UNLIMITED,
    PlanFeatures,
    get_entitlements,
    is_over_limit,
    is_unlimited,
    usage_level,
    usage_percentage,
)


def test_plan_limits():
    assert (PLANS["free"].queries_per_day, PLANS["free"].monthly_credits) == (5, 100)
    assert (PLANS["trial"].queries_per_day, PLANS["trial"].monthly_credits) == (50, 500)
    assert (PLANS["pro"].queries_per_day, PLANS["pro"].monthly_credits) == (200, 2000)
    assert PLANS["enterprise"].queries_per_day == UNLIMITED
    assert PLANS["enterprise"].monthly_credits == UNLIMITED


def test_plans_are_read_only():
    with pytest.raises(TypeError):
        PLANS["free"] = PLANS["pro"]


def test_unknown_plan_falls_back_to_free():
    assert get_entitlements("platinum").plan_id == "free"
    assert get_entitlements(None).plan_id == "free"
    assert get_entitlements(" PRO ").plan_id == "pro"


def test_feature_flags():
    assert PLANS["free"].features.is_enabled("basic_keyword_research")
    assert not PLANS["free"].features.is_enabled("serp_analysis")
    assert PLANS["trial"].features.is_enabled("competitor_analysis")
    assert not PLANS["pro"].features.is_enabled("custom_integrations")
    assert PLANS["enterprise"].features.is_enabled("dedicated_account")


def test_unknown_feature_raises():
    with pytest.raises(KeyError):
        PlanFeatures().is_enabled("teleportation")


def test_feature_names():
    assert "ai_insights" in PlanFeatures.names()
    assert len(PlanFeatures.names()) == 9


def test_limit_helpers():
    assert is_unlimited(-1)
    assert not is_unlimited(0)
    assert is_over_limit(5, 5)
    assert not is_over_limit(4, 5)
    assert not is_over_limit(10 ** 6, UNLIMITED)


@pytest.mark.parametrize("usage,limit,percentage,level", [
    (0, 100, 0, "none"),
    (79, 100, 79, "none"),
    (80, 100, 80, "warning"),
    (100, 100, 100, "critical"),
    (250, 100, 100, "critical"),
    (500, UNLIMITED, 0, "none"),
    (0, 0, 100, "critical"),
])
def test_usage_percentage_and_level(usage, limit, percentage, level):
    assert usage_percentage(usage, limit) == percentage
    assert usage_level(usage, limit) == level
