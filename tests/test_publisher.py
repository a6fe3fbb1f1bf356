import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text

from menu_ledger.core.exceptions import BuildFailed, Forbidden, InvalidArgument, NotFoundError
from menu_ledger.ledger.exporter import ExportDocument
from menu_ledger.ledger.publisher import MenuPublisher, SnapshotView
from menu_ledger.ledger.snapshot_store import SnapshotHistoryPage, SnapshotStore
from menu_ledger.ledger.verifier import IntegrityVerifier
from menu_ledger.models import MenuSnapshot
from menu_ledger.services.notifications.base import BaseNotificationChannel
from menu_ledger.services.notifications.mock import MockNotificationChannel

ORG = "org-demo"
OWNER = "user-owner"
MANAGER = "user-manager"
STAFF = "user-staff"


class ExplodingChannel(BaseNotificationChannel):
    @property
    def provider_name(self) -> str:
        return "exploding"

    async def publish(self, channel, event):
        raise ConnectionError("broker unreachable")

    async def health_check(self) -> bool:
        return False


async def stored_versions(session_maker, organization_id=ORG):
    async with session_maker() as session:
        rows = await session.scalars(
            select(MenuSnapshot.version)
            .where(MenuSnapshot.organization_id == organization_id)
            .order_by(MenuSnapshot.version)
        )
        return list(rows)


# =============================================================================
# PUBLISH: AUTHORIZATION
# =============================================================================

async def test_owner_and_manager_may_publish(publisher):
    first = await publisher.publish(ORG, actor_id=OWNER)
    second = await publisher.publish(ORG, actor_id=MANAGER, notes="spring menu")

    assert (first.version, second.version) == (1, 2)
    assert first.attempts == 1
    assert len(first.hash) == 64


@pytest.mark.parametrize("actor", [STAFF, "user-stranger", None, ""])
async def test_other_actors_may_not_publish(publisher, actor):
    with pytest.raises(Forbidden):
        await publisher.publish(ORG, actor_id=actor)


async def test_inactive_organization_may_not_publish(publisher, catalog):
    catalog.set_organization_active(ORG, False)
    with pytest.raises(Forbidden):
        await publisher.publish(ORG, actor_id=OWNER)


async def test_publish_requires_the_feature(make_publisher, grant_override):
    publisher = make_publisher()
    with pytest.raises(Forbidden):
        await publisher.publish(ORG, actor_id=OWNER)

    await grant_override(expires_in=timedelta(days=1))
    result = await publisher.publish(ORG, actor_id=OWNER)
    assert result.version == 1


async def test_publish_unknown_organization(publisher, identity):
    identity.grant(OWNER, "org-missing", "owner")
    with pytest.raises(NotFoundError):
        await publisher.publish("org-missing", actor_id=OWNER)


async def test_publish_when_catalog_is_down(publisher, catalog, session_maker):
    catalog.fail_next_read()
    with pytest.raises(BuildFailed):
        await publisher.publish(ORG, actor_id=OWNER)
    assert await stored_versions(session_maker) == []


# =============================================================================
# PUBLISH: EVENTS
# =============================================================================

async def test_publish_announces_the_snapshot(publisher, notifications):
    result = await publisher.publish(ORG, actor_id=OWNER)

    channel, event = notifications.published[-1]
    assert channel == f"organization:{ORG}"
    assert event["type"] == "menu.published"
    assert event["snapshot_id"] == result.snapshot_id
    assert event["version"] == 1
    assert event["hash"] == result.hash


@pytest.mark.parametrize("channel", [MockNotificationChannel(failure_rate=1.0), ExplodingChannel()])
async def test_notification_failure_does_not_fail_publish(
    session_maker, catalog, identity, grant_plan, settings, channel
):
    await grant_plan()
    async with session_maker() as session:
        publisher = MenuPublisher(session, catalog, identity, channel, settings=settings)
        result = await publisher.publish(ORG, actor_id=OWNER)

    assert result.version == 1
    assert await stored_versions(session_maker) == [1]


# =============================================================================
# END-TO-END SCENARIOS
# =============================================================================

async def test_latest_price_wins(publisher):
    t1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await publisher.record_price_change("item-tea", 100, "TRY", actor_id=OWNER, recorded_at=t1)
    await publisher.record_price_change(
        "item-tea", 120, "TRY", actor_id=OWNER, recorded_at=t1 + timedelta(hours=1)
    )

    current = await publisher.projector.current_price_of("item-tea")
    assert current.price == 120
    assert current.currency == "TRY"


async def test_publish_verify_tamper_lifecycle(publisher, catalog, engine, session_maker):
    await publisher.record_price_change("item-tea", "120", "TRY", actor_id=OWNER)

    v1 = await publisher.publish(ORG, actor_id=OWNER)
    v2 = await publisher.publish(ORG, actor_id=OWNER)
    assert (v1.version, v2.version) == (1, 2)
    assert v2.hash == v1.hash

    catalog.set_item_visibility(ORG, "item-tea", False)
    v3 = await publisher.publish(ORG, actor_id=OWNER)
    assert v3.version == 3
    assert v3.hash != v1.hash

    view = await publisher.get_snapshot(ORG, version=1, verify=True)
    assert view.verification.is_valid

    async with engine.begin() as conn:
        raw = (await conn.execute(
            text("SELECT content FROM menu_snapshots WHERE id = :id"), {"id": v1.snapshot_id}
        )).scalar_one()
        content = json.loads(raw) if isinstance(raw, str) else raw
        content["items"][0]["price"] = "1.00"
        await conn.execute(text("DROP TRIGGER menu_snapshots_no_update"))
        await conn.execute(
            text("UPDATE menu_snapshots SET content = :c WHERE id = :id"),
            {"c": json.dumps(content), "id": v1.snapshot_id},
        )

    async with session_maker() as fresh:
        result = await IntegrityVerifier(SnapshotStore(fresh)).verify(v1.snapshot_id)

    assert not result.is_valid
    assert result.stored_hash == v1.hash
    assert result.computed_hash != v1.hash


async def test_two_simultaneous_publishes_take_consecutive_versions(
    make_publisher, grant_plan, session_maker
):
    await grant_plan()
    setup = make_publisher()
    for _ in range(3):
        await setup.publish(ORG, actor_id=OWNER)

    a, b = make_publisher(), make_publisher()
    results = await asyncio.gather(
        a.publish(ORG, actor_id=OWNER),
        b.publish(ORG, actor_id=MANAGER),
    )

    assert sorted(r.version for r in results) == [4, 5]
    assert await stored_versions(session_maker) == [1, 2, 3, 4, 5]


async def test_many_simultaneous_publishes_stay_contiguous(
    make_publisher, grant_plan, session_maker, settings
):
    await grant_plan()
    patient = settings.model_copy(update={"publish_max_retries": 10})
    publishers = [make_publisher(patient) for _ in range(5)]

    results = await asyncio.gather(*(p.publish(ORG, actor_id=OWNER) for p in publishers))

    assert sorted(r.version for r in results) == [1, 2, 3, 4, 5]
    assert len({r.snapshot_id for r in results}) == 5
    assert await stored_versions(session_maker) == [1, 2, 3, 4, 5]


# =============================================================================
# READ SIDE
# =============================================================================

async def test_get_snapshot_variants(publisher):
    first = await publisher.publish(ORG, actor_id=OWNER)
    second = await publisher.publish(ORG, actor_id=OWNER)

    latest = await publisher.get_snapshot(ORG)
    assert isinstance(latest, SnapshotView)
    assert latest.snapshot.id == second.snapshot_id
    assert latest.verification is None

    by_id = await publisher.get_snapshot(snapshot_id=first.snapshot_id, verify=True)
    assert by_id.snapshot.version == 1
    assert by_id.verification.is_valid

    by_version = await publisher.get_snapshot(ORG, version=2)
    assert by_version.snapshot.id == second.snapshot_id

    page = await publisher.get_snapshot(ORG, history=True, limit=1)
    assert isinstance(page, SnapshotHistoryPage)
    assert [s.version for s in page.items] == [2]
    assert page.total_count == 2

    document = await publisher.get_snapshot(ORG, version=1, export=True)
    assert isinstance(document, ExportDocument)
    assert not document.integrity_failure


async def test_get_snapshot_errors(publisher, identity):
    with pytest.raises(InvalidArgument):
        await publisher.get_snapshot()
    with pytest.raises(NotFoundError):
        await publisher.get_snapshot(ORG)

    result = await publisher.publish(ORG, actor_id=OWNER)
    with pytest.raises(NotFoundError):
        await publisher.get_snapshot("org-other", snapshot_id=result.snapshot_id)
    with pytest.raises(Forbidden):
        await publisher.get_snapshot(ORG, actor_id="user-stranger")

    identity.grant("user-auditor", ORG, "viewer")
    view = await publisher.get_snapshot(ORG, actor_id="user-auditor")
    assert view.snapshot.id == result.snapshot_id


async def test_public_menu(publisher, catalog):
    with pytest.raises(NotFoundError):
        await publisher.get_public_menu("demo-cafe")

    result = await publisher.publish(ORG, actor_id=OWNER)
    snapshot = await publisher.get_public_menu("demo-cafe")
    assert snapshot.id == result.snapshot_id

    with pytest.raises(NotFoundError):
        await publisher.get_public_menu("no-such-cafe")

    catalog.set_organization_active(ORG, False)
    with pytest.raises(NotFoundError):
        await publisher.get_public_menu("demo-cafe")


# =============================================================================
# PRICES
# =============================================================================

async def test_record_price_change(publisher, notifications, settings):
    fact = await publisher.record_price_change("item-tea", "19.90", actor_id=OWNER, reason="  ")

    assert fact.currency == settings.default_currency
    assert fact.recorded_by == OWNER
    assert fact.reason is None

    channel, event = notifications.published[-1]
    assert channel == "item:item-tea"
    assert event["type"] == "price.changed"
    assert event["fact_id"] == fact.id


async def test_record_price_change_requires_actor(publisher):
    with pytest.raises(Forbidden):
        await publisher.record_price_change("item-tea", "10", "TRY")


async def test_rejected_price_is_not_announced(publisher, notifications):
    with pytest.raises(InvalidArgument):
        await publisher.record_price_change("item-tea", "-1", "TRY", actor_id=OWNER)
    assert notifications.events("price.changed") == []
