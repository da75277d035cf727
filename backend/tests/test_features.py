"""Unit tests for the plan feature table and usage limits."""

from saas_billing.models.subscription import Subscription
from saas_billing.services.features import (
    FEATURE_ACCESS,
    UNLIMITED,
    get_usage_limit,
    has_feature_access,
    has_reached_limit,
    plan_access,
)


def _sub(plan_name: str | None) -> Subscription:
    return Subscription(user_id="u1", status="active", plan_name=plan_name)


def test_unknown_plan_and_missing_record_fall_back_to_starter():
    starter_answer = "basic_analytics" in FEATURE_ACCESS["starter"].features
    assert has_feature_access(None, "basic_analytics") == starter_answer
    assert has_feature_access(_sub("unknown"), "basic_analytics") == starter_answer
    assert starter_answer is True
    assert has_feature_access(None, "advanced_analytics") is False
    assert has_feature_access(_sub("unknown"), "advanced_analytics") is False


def test_plan_lookup_is_case_insensitive():
    assert has_feature_access(_sub("PRO"), "advanced_analytics") is True
    assert has_feature_access(_sub("Enterprise"), "advanced_security") is True
    assert plan_access(_sub("pro")) is FEATURE_ACCESS["pro"]


def test_pro_lacks_enterprise_features():
    assert has_feature_access(_sub("Pro"), "dedicated_support") is False
    assert FEATURE_ACCESS["pro"].features < FEATURE_ACCESS["enterprise"].features


def test_usage_limits():
    assert get_usage_limit(None, "projects") == 3
    assert get_usage_limit(_sub("Pro"), "projects") == UNLIMITED
    assert get_usage_limit(_sub("Pro"), "storage_gb") == 50
    assert get_usage_limit(_sub("Enterprise"), "storage_gb") == UNLIMITED
    assert get_usage_limit(_sub("Pro"), "seats") == 0


def test_has_reached_limit():
    assert has_reached_limit(None, "projects", 2) is False
    assert has_reached_limit(None, "projects", 3) is True
    assert has_reached_limit(_sub("unknown"), "projects", 3) is True
    assert has_reached_limit(_sub("Pro"), "projects", 10_000) is False
    assert has_reached_limit(_sub("Pro"), "seats", 0) is True
