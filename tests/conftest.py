"""
Shared fixtures: a temporary SQLite database per test (tables and
append-only triggers included) and in-memory collaborators.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menu_ledger.core.config import get_settings
from menu_ledger.database import create_engine_for, init_db
from menu_ledger.ledger.publisher import MenuPublisher
from menu_ledger.models import FeatureOverride, Plan, PlanFeature, Subscription
from menu_ledger.services.catalog.mock import DEMO_ORGANIZATION_ID, MockCatalogReader
from menu_ledger.services.identity.mock import MockIdentityProvider
from menu_ledger.services.notifications.mock import MockNotificationChannel

ORG = DEMO_ORGANIZATION_ID
OWNER = "user-owner"
MANAGER = "user-manager"
STAFF = "user-staff"


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def catalog():
    return MockCatalogReader()


@pytest.fixture
def identity():
    return MockIdentityProvider({
        (OWNER, ORG): "owner",
        (MANAGER, ORG): "manager",
        (STAFF, ORG): "staff",
    })


@pytest.fixture
def notifications():
    return MockNotificationChannel()


@pytest.fixture
def grant_plan(session_maker):
    """Create a plan carrying one feature and subscribe the organization to it."""

    async def grant(
        organization_id: str = ORG,
        feature_key: str = "menu_publish",
        value_boolean: Optional[bool] = True,
        value_limit: Optional[int] = None,
        is_unlimited: bool = False,
        status: str = "active",
        valid_until: Optional[datetime] = None,
        plan_name: str = "Pro",
    ) -> None:
        async with session_maker() as session:
            plan = Plan(name=plan_name)
            session.add(plan)
            await session.flush()
            session.add(PlanFeature(
                plan_id=plan.id,
                feature_key=feature_key,
                value_boolean=value_boolean,
                value_limit=value_limit,
                is_unlimited=is_unlimited,
            ))
            session.add(Subscription(
                organization_id=organization_id,
                plan_id=plan.id,
                status=status,
                valid_until=valid_until,
            ))
            await session.commit()

    return grant


@pytest.fixture
def grant_override(session_maker):
    """Insert an organization-specific override."""

    async def grant(
        organization_id: str = ORG,
        feature_key: str = "menu_publish",
        override_value: bool = True,
        expires_in: Optional[timedelta] = None,
        value_limit: Optional[int] = None,
        is_unlimited: bool = False,
    ) -> None:
        expires_at = datetime.now(timezone.utc) + expires_in if expires_in is not None else None
        async with session_maker() as session:
            session.add(FeatureOverride(
                organization_id=organization_id,
                feature_key=feature_key,
                override_value=override_value,
                value_limit=value_limit,
                is_unlimited=is_unlimited,
                expires_at=expires_at,
                reason="support ticket",
                granted_by="admin-1",
            ))
            await session.commit()

    return grant


@pytest.fixture
async def make_publisher(session_maker, catalog, identity, notifications, settings):
    """Build publishers over fresh sessions; sessions are closed at teardown."""
    sessions = []

    def make(custom_settings=None) -> MenuPublisher:
        session = session_maker()
        sessions.append(session)
        return MenuPublisher(
            session,
            catalog,
            identity,
            notifications,
            settings=custom_settings or settings,
        )

    yield make

    for session in sessions:
        await session.close()


@pytest.fixture
async def publisher(make_publisher, grant_plan):
    await grant_plan()
    return make_publisher()
