from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from menu_ledger.core.exceptions import InvalidArgument, NotFoundError
from menu_ledger.ledger.exporter import ComplianceExporter
from menu_ledger.ledger.price_ledger import PriceLedger
from menu_ledger.ledger.projector import PriceProjector
from menu_ledger.ledger.snapshot_builder import SnapshotBuilder
from menu_ledger.ledger.snapshot_store import SnapshotStore
from menu_ledger.ledger.verifier import IntegrityVerifier

ORG = "org-demo"
T0 = datetime(2024, 2, 1, tzinfo=timezone.utc)


def make_exporter(session, catalog):
    store = SnapshotStore(session)
    return ComplianceExporter(store, IntegrityVerifier(store), PriceLedger(session), catalog)


@pytest.fixture
def ledger(session):
    return PriceLedger(session)


@pytest.fixture
def publish(session, catalog):
    store = SnapshotStore(session)
    builder = SnapshotBuilder(catalog, PriceProjector(session), store)

    async def publish_once():
        return await store.save(await builder.build(ORG))

    return publish_once


async def test_export_of_valid_snapshot(session, catalog, ledger, publish):
    await ledger.append("item-tea", "20", "TRY", recorded_at=T0)
    snapshot = await publish()

    document = await make_exporter(session, catalog).export_for_compliance(snapshot.id)
    data = document.to_dict()

    assert data["integrity_failure"] is False
    assert data["verification"]["is_valid"] is True
    assert data["hash"] == snapshot.hash
    assert data["version"] == 1
    assert data["content"] == snapshot.content
    assert data["exported_at"]


async def test_export_of_tampered_snapshot_still_succeeds(engine, session_maker, catalog, publish):
    snapshot = await publish()

    async with engine.begin() as conn:
        await conn.execute(text("DROP TRIGGER menu_snapshots_no_update"))
        await conn.execute(
            text("UPDATE menu_snapshots SET content = :c WHERE id = :id"),
            {"c": '{"items": []}', "id": snapshot.id},
        )

    async with session_maker() as fresh:
        document = await make_exporter(fresh, catalog).export_for_compliance(snapshot.id)

    assert document.integrity_failure
    assert document.verification.stored_hash == snapshot.hash
    assert document.verification.computed_hash != snapshot.hash
    assert document.to_dict()["integrity_failure"] is True


async def test_export_of_unknown_snapshot(session, catalog):
    with pytest.raises(NotFoundError):
        await make_exporter(session, catalog).export_for_compliance("missing")


async def test_compare_snapshots(session, catalog, ledger, publish):
    await ledger.append("item-tea", "20", "TRY", recorded_at=T0)
    await ledger.append("item-coffee", "40", "TRY", recorded_at=T0)
    await publish()

    await ledger.append("item-tea", "25", "TRY")
    catalog.set_item_visibility(ORG, "item-baklava", False)
    await publish()

    comparison = await make_exporter(session, catalog).compare_snapshots(ORG, 1, 2)

    assert not comparison.identical
    assert comparison.removed_items == ["item-baklava"]
    assert comparison.added_items == []
    assert comparison.price_changes == [{
        "item_id": "item-tea",
        "name": "Turkish Tea",
        "old_price": "20.00",
        "old_currency": "TRY",
        "new_price": "25.00",
        "new_currency": "TRY",
    }]

    with pytest.raises(NotFoundError):
        await make_exporter(session, catalog).compare_snapshots(ORG, 1, 3)


async def test_compare_identical_versions(session, catalog, publish):
    await publish()
    await publish()
    comparison = await make_exporter(session, catalog).compare_snapshots(ORG, 1, 2)
    assert comparison.identical
    assert comparison.price_changes == []


async def test_price_history_export(session, catalog, ledger):
    await ledger.append("item-tea", "20", "TRY", recorded_at=T0, actor="user-1")
    await ledger.append("item-tea", "22", "TRY", recorded_at=T0 + timedelta(days=10))
    await ledger.append("item-coffee", "40", "TRY", recorded_at=T0 + timedelta(days=40))
    await ledger.append("item-from-elsewhere", "1", "TRY", recorded_at=T0)

    export = await make_exporter(session, catalog).export_price_history(
        ORG, T0, T0 + timedelta(days=30)
    )
    data = export.to_dict()

    assert data["entry_count"] == 2
    assert [e["price"] for e in data["entries"]] == ["20.00", "22.00"]
    assert data["entries"][0]["recorded_by"] == "user-1"


async def test_price_history_export_validates_input(session, catalog):
    exporter = make_exporter(session, catalog)
    with pytest.raises(InvalidArgument):
        await exporter.export_price_history(ORG, T0, T0 - timedelta(days=1))
    with pytest.raises(NotFoundError):
        await exporter.export_price_history("org-missing", T0, T0)
