"""
Feature / Permission Gate

Decides whether an organization may use a licensed feature. The decision is a
pure function of two lookups:

    1. override grant: organization-specific exception, ignored once expired
    2. plan grant: the feature's value in the organization's live subscription

A live override always wins. Without either, access is denied.

Plan limits carry an explicit unlimited flag; no numeric value stands in for
"no limit".
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from menu_ledger.core.exceptions import InvalidArgument
from menu_ledger.ledger.clock import as_utc, utc_now
from menu_ledger.models import FeatureOverride, Plan, PlanFeature, Subscription

logger = logging.getLogger(__name__)

LIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


@dataclass(frozen=True)
class FeatureLimit:
    """Numeric allowance of a limit-type feature."""
    value: Optional[int] = None
    unlimited: bool = False

    def permits(self, current_count: int) -> bool:
        """True while one more unit fits under the limit."""
        if self.unlimited:
            return True
        if self.value is None:
            return False
        return current_count < self.value


@dataclass(frozen=True)
class PlanGrant:
    plan_name: str
    value_boolean: Optional[bool]
    value_limit: Optional[int]
    is_unlimited: bool


@dataclass(frozen=True)
class OverrideGrant:
    override_value: bool
    value_limit: Optional[int]
    is_unlimited: bool
    expires_at: Optional[datetime]
    reason: Optional[str] = None


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    source: str  # "override", "plan" or "none"
    limit: Optional[FeatureLimit] = None
    plan_name: Optional[str] = None
    expires_at: Optional[datetime] = None


def _plan_limit(plan: PlanGrant) -> Optional[FeatureLimit]:
    if plan.is_unlimited or plan.value_limit is not None:
        return FeatureLimit(value=plan.value_limit, unlimited=plan.is_unlimited)
    return None


def _plan_allows(plan: PlanGrant) -> bool:
    if plan.value_boolean is not None:
        return plan.value_boolean
    return plan.is_unlimited or (plan.value_limit or 0) > 0


def resolve_permission(
    plan: Optional[PlanGrant],
    override: Optional[OverrideGrant],
    now: datetime,
) -> PermissionDecision:
    """
    Combine the two grants into a decision.

    An override whose expires_at is not after `now` counts as absent.
    """
    plan_name = plan.plan_name if plan else None

    if override is not None:
        expires_at = as_utc(override.expires_at)
        if expires_at is None or expires_at > now:
            limit = None
            if override.override_value:
                if override.is_unlimited or override.value_limit is not None:
                    limit = FeatureLimit(value=override.value_limit, unlimited=override.is_unlimited)
                elif plan is not None:
                    limit = _plan_limit(plan)
            return PermissionDecision(
                allowed=override.override_value,
                source="override",
                limit=limit,
                plan_name=plan_name,
                expires_at=expires_at,
            )

    if plan is not None:
        allowed = _plan_allows(plan)
        return PermissionDecision(
            allowed=allowed,
            source="plan",
            limit=_plan_limit(plan) if allowed else None,
            plan_name=plan_name,
        )

    return PermissionDecision(allowed=False, source="none")


class PermissionGate:
    """Database-backed lookups feeding resolve_permission()."""

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.session = session
        self.clock = clock

    async def plan_grant(self, organization_id: str, feature_key: str, now: datetime) -> Optional[PlanGrant]:
        rows = await self.session.execute(
            select(
                Plan.name,
                PlanFeature.value_boolean,
                PlanFeature.value_limit,
                PlanFeature.is_unlimited,
                Subscription.valid_until,
            )
            .join(Plan, Plan.id == Subscription.plan_id)
            .join(PlanFeature, PlanFeature.plan_id == Plan.id)
            .where(
                Subscription.organization_id == organization_id,
                Subscription.status.in_(LIVE_SUBSCRIPTION_STATUSES),
                Plan.is_active.is_(True),
                PlanFeature.feature_key == feature_key,
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        for name, value_boolean, value_limit, is_unlimited, valid_until in rows:
            valid_until = as_utc(valid_until)
            if valid_until is None or valid_until > now:
                return PlanGrant(
                    plan_name=name,
                    value_boolean=value_boolean,
                    value_limit=value_limit,
                    is_unlimited=bool(is_unlimited),
                )
        return None

    async def override_grant(self, organization_id: str, feature_key: str) -> Optional[OverrideGrant]:
        row = await self.session.scalar(
            select(FeatureOverride).where(
                FeatureOverride.organization_id == organization_id,
                FeatureOverride.feature_key == feature_key,
            )
        )
        if row is None:
            return None
        return OverrideGrant(
            override_value=bool(row.override_value),
            value_limit=row.value_limit,
            is_unlimited=bool(row.is_unlimited),
            expires_at=as_utc(row.expires_at),
            reason=row.reason,
        )

    async def check(self, organization_id: str, feature_key: str) -> PermissionDecision:
        if not organization_id or not feature_key:
            raise InvalidArgument("organization_id and feature_key are required")
        now = self.clock()
        plan = await self.plan_grant(organization_id, feature_key, now)
        override = await self.override_grant(organization_id, feature_key)
        decision = resolve_permission(plan, override, now)
        logger.debug(
            f"Feature {feature_key} for {organization_id}: "
            f"allowed={decision.allowed} (source={decision.source})"
        )
        return decision

    async def is_allowed(self, organization_id: str, feature_key: str) -> bool:
        return (await self.check(organization_id, feature_key)).allowed

    async def get_limit(self, organization_id: str, feature_key: str) -> Optional[FeatureLimit]:
        """Effective limit, or None when the feature is denied or has no limit."""
        return (await self.check(organization_id, feature_key)).limit

    async def is_within_limit(self, organization_id: str, feature_key: str, current_count: int) -> bool:
        decision = await self.check(organization_id, feature_key)
        if not decision.allowed:
            return False
        if decision.limit is None:
            # Boolean features have no count to exceed
            return True
        return decision.limit.permits(current_count)

    async def batch_check(self, organization_id: str, feature_keys: Iterable[str]) -> dict[str, PermissionDecision]:
        return {key: await self.check(organization_id, key) for key in dict.fromkeys(feature_keys)}


async def seed_demo_plan(session: AsyncSession, organization_id: str, feature_key: str) -> bool:
    """
    Subscribe a development organization to a plan granting one feature.

    Does nothing when the organization already has a plan granting it.
    Returns True when a plan was created.
    """
    gate = PermissionGate(session)
    if await gate.plan_grant(organization_id, feature_key, gate.clock()) is not None:
        return False

    plan = Plan(name="Demo")
    session.add(plan)
    await session.flush()
    session.add(PlanFeature(plan_id=plan.id, feature_key=feature_key, value_boolean=True))
    session.add(Subscription(organization_id=organization_id, plan_id=plan.id, status="active"))
    await session.commit()

    logger.info(f"Seeded demo plan granting {feature_key} to {organization_id}")
    return True
