from datetime import datetime, timedelta, timezone

import pytest

from menu_ledger.core.exceptions import InvalidArgument
from menu_ledger.ledger.permissions import (
    FeatureLimit,
    OverrideGrant,
    PermissionGate,
    PlanGrant,
    resolve_permission,
    seed_demo_plan,
)

ORG = "org-demo"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

PLAN_ON = PlanGrant(plan_name="Pro", value_boolean=True, value_limit=None, is_unlimited=False)
PLAN_OFF = PlanGrant(plan_name="Free", value_boolean=False, value_limit=None, is_unlimited=False)


def override(value, expires_at=None, value_limit=None, is_unlimited=False):
    return OverrideGrant(
        override_value=value,
        value_limit=value_limit,
        is_unlimited=is_unlimited,
        expires_at=expires_at,
    )


# =============================================================================
# resolve_permission
# =============================================================================

def test_live_override_beats_plan():
    decision = resolve_permission(PLAN_OFF, override(True, NOW + timedelta(days=1)), NOW)
    assert decision.allowed
    assert decision.source == "override"
    assert decision.plan_name == "Free"

    decision = resolve_permission(PLAN_ON, override(False), NOW)
    assert not decision.allowed
    assert decision.source == "override"


def test_expired_override_falls_back_to_plan():
    decision = resolve_permission(PLAN_OFF, override(True, NOW), NOW)
    assert not decision.allowed
    assert decision.source == "plan"

    decision = resolve_permission(PLAN_ON, override(False, NOW - timedelta(seconds=1)), NOW)
    assert decision.allowed
    assert decision.source == "plan"


def test_no_grants_is_denied():
    decision = resolve_permission(None, None, NOW)
    assert not decision.allowed
    assert decision.source == "none"
    assert decision.limit is None


def test_plan_limits():
    limited = PlanGrant(plan_name="Basic", value_boolean=None, value_limit=3, is_unlimited=False)
    unlimited = PlanGrant(plan_name="Max", value_boolean=None, value_limit=None, is_unlimited=True)
    zero = PlanGrant(plan_name="Free", value_boolean=None, value_limit=0, is_unlimited=False)

    assert resolve_permission(limited, None, NOW).limit == FeatureLimit(value=3)
    assert resolve_permission(unlimited, None, NOW).limit == FeatureLimit(unlimited=True)
    assert not resolve_permission(zero, None, NOW).allowed


def test_override_without_limit_keeps_plan_limit():
    limited = PlanGrant(plan_name="Basic", value_boolean=None, value_limit=3, is_unlimited=False)

    kept = resolve_permission(limited, override(True), NOW)
    assert kept.limit == FeatureLimit(value=3)

    raised = resolve_permission(limited, override(True, value_limit=10), NOW)
    assert raised.limit == FeatureLimit(value=10)


@pytest.mark.parametrize(
    "limit, count, expected",
    [
        (FeatureLimit(value=3), 2, True),
        (FeatureLimit(value=3), 3, False),
        (FeatureLimit(unlimited=True), 10**9, True),
        (FeatureLimit(), 0, False),
    ],
)
def test_feature_limit_permits(limit, count, expected):
    assert limit.permits(count) is expected


# =============================================================================
# PermissionGate
# =============================================================================

@pytest.fixture
def gate(session):
    return PermissionGate(session)


async def test_gate_without_subscription(gate):
    assert not await gate.is_allowed(ORG, "menu_publish")


async def test_gate_with_active_plan(gate, grant_plan):
    await grant_plan()
    decision = await gate.check(ORG, "menu_publish")
    assert decision.allowed
    assert decision.source == "plan"
    assert decision.plan_name == "Pro"


@pytest.mark.parametrize("status, expected", [("trialing", True), ("canceled", False), ("past_due", False)])
async def test_gate_subscription_status(gate, grant_plan, status, expected):
    await grant_plan(status=status)
    assert await gate.is_allowed(ORG, "menu_publish") is expected


async def test_gate_ignores_expired_subscription(gate, grant_plan):
    await grant_plan(valid_until=datetime.now(timezone.utc) - timedelta(days=1))
    assert not await gate.is_allowed(ORG, "menu_publish")


async def test_gate_override_grants_and_expires(gate, grant_override):
    await grant_override(expires_in=timedelta(days=7))
    decision = await gate.check(ORG, "menu_publish")
    assert decision.allowed
    assert decision.source == "override"
    assert decision.expires_at is not None


async def test_gate_expired_override_is_ignored(gate, grant_override):
    await grant_override(expires_in=timedelta(seconds=-5))
    decision = await gate.check(ORG, "menu_publish")
    assert not decision.allowed
    assert decision.source == "none"


async def test_gate_override_can_revoke(gate, grant_plan, grant_override):
    await grant_plan()
    await grant_override(override_value=False)
    assert not await gate.is_allowed(ORG, "menu_publish")


async def test_gate_limits(gate, grant_plan):
    await grant_plan(feature_key="max_items", value_boolean=None, value_limit=2)

    assert await gate.get_limit(ORG, "max_items") == FeatureLimit(value=2)
    assert await gate.is_within_limit(ORG, "max_items", 1)
    assert not await gate.is_within_limit(ORG, "max_items", 2)
    assert not await gate.is_within_limit(ORG, "max_categories", 0)


async def test_gate_unlimited_plan(gate, grant_plan):
    await grant_plan(feature_key="max_items", value_boolean=None, is_unlimited=True)
    assert (await gate.get_limit(ORG, "max_items")).unlimited
    assert await gate.is_within_limit(ORG, "max_items", 50_000)


async def test_gate_boolean_feature_has_no_count(gate, grant_plan):
    await grant_plan()
    assert await gate.get_limit(ORG, "menu_publish") is None
    assert await gate.is_within_limit(ORG, "menu_publish", 1000)


async def test_batch_check(gate, grant_plan):
    await grant_plan()
    decisions = await gate.batch_check(ORG, ["menu_publish", "custom_domain", "menu_publish"])

    assert list(decisions) == ["menu_publish", "custom_domain"]
    assert decisions["menu_publish"].allowed
    assert not decisions["custom_domain"].allowed


async def test_gate_requires_identifiers(gate):
    with pytest.raises(InvalidArgument):
        await gate.check("", "menu_publish")


async def test_seed_demo_plan_grants_feature_once(session, gate):
    assert not await gate.is_allowed(ORG, "menu_publish")

    assert await seed_demo_plan(session, ORG, "menu_publish")
    decision = await gate.check(ORG, "menu_publish")
    assert decision.allowed
    assert decision.source == "plan"
    assert decision.plan_name == "Demo"

    assert not await seed_demo_plan(session, ORG, "menu_publish")
