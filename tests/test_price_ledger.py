from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, text

from menu_ledger.core.exceptions import ImmutabilityViolation, InvalidArgument
from menu_ledger.database import translate_storage_errors
from menu_ledger.ledger.clock import MonotonicClock
from menu_ledger.ledger.price_ledger import PriceLedger
from menu_ledger.models import PriceFact


@pytest.fixture
def ledger(session):
    return PriceLedger(session)


async def test_append_returns_persisted_fact(ledger, session_maker):
    fact = await ledger.append("item-x", "100", "try", reason="opening", actor="user-1")

    assert fact.id is not None
    assert fact.price == Decimal("100.00")
    assert fact.currency == "TRY"
    assert fact.recorded_by == "user-1"

    # Visible from another connection right away
    async with session_maker() as other:
        stored = await other.get(PriceFact, fact.id)
        assert stored is not None
        assert stored.item_id == "item-x"


@pytest.mark.parametrize("price", [0, "0.00", -5, "-0.01", "NaN", "Infinity", "abc", None, True])
async def test_append_rejects_invalid_price(ledger, price):
    with pytest.raises(InvalidArgument):
        await ledger.append("item-x", price, "TRY")


@pytest.mark.parametrize("currency", ["", "TR", "TRYY", "12A", None])
async def test_append_rejects_invalid_currency(ledger, currency):
    with pytest.raises(InvalidArgument):
        await ledger.append("item-x", "10", currency)


async def test_append_rejects_empty_item_id(ledger):
    with pytest.raises(InvalidArgument):
        await ledger.append("  ", "10", "TRY")


async def test_precision_follows_currency(ledger):
    with pytest.raises(InvalidArgument):
        await ledger.append("item-x", "10.005", "TRY")
    with pytest.raises(InvalidArgument):
        await ledger.append("item-x", "1500.5", "JPY")

    yen = await ledger.append("item-x", "1500", "JPY")
    dinar = await ledger.append("item-y", "2.125", "KWD")
    trailing = await ledger.append("item-z", "12.500", "EUR")

    assert yen.price == Decimal("1500")
    assert dinar.price == Decimal("2.125")
    assert trailing.price == Decimal("12.50")


async def test_float_prices_are_read_as_written(ledger):
    fact = await ledger.append("item-x", 12.1, "USD")
    assert fact.price == Decimal("12.10")


async def test_recorded_at_is_strictly_increasing(ledger):
    facts = [await ledger.append("item-x", str(10 + i), "TRY") for i in range(5)]
    stamps = [f.recorded_at for f in facts]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == len(stamps)


def test_monotonic_clock_never_repeats():
    clock = MonotonicClock()
    values = [clock.now() for _ in range(1000)]
    assert all(b > a for a, b in zip(values, values[1:]))


async def test_orm_update_is_rejected(ledger, session):
    fact = await ledger.append("item-x", "100", "TRY")

    fact.price = Decimal("1.00")
    with pytest.raises(ImmutabilityViolation) as exc_info:
        await session.commit()
    await session.rollback()

    assert exc_info.value.table == "price_facts"
    assert exc_info.value.operation == "update"


async def test_orm_delete_is_rejected(ledger, session):
    fact = await ledger.append("item-x", "100", "TRY")

    await session.delete(fact)
    with pytest.raises(ImmutabilityViolation):
        await session.commit()
    await session.rollback()


async def test_storage_triggers_reject_raw_sql(ledger, session_maker, caplog):
    fact = await ledger.append("item-x", "100", "TRY", reason="original")

    async with session_maker() as raw:
        with pytest.raises(ImmutabilityViolation) as exc_info:
            async with translate_storage_errors():
                await raw.execute(
                    text("UPDATE price_facts SET price = 1, reason = 'edited' WHERE id = :id"),
                    {"id": fact.id},
                )
        assert exc_info.value.operation == "UPDATE"
        await raw.rollback()

        with pytest.raises(ImmutabilityViolation):
            async with translate_storage_errors():
                await raw.execute(text("DELETE FROM price_facts WHERE id = :id"), {"id": fact.id})
        await raw.rollback()

    async with session_maker() as check:
        row = (
            await check.execute(
                select(PriceFact.price, PriceFact.reason).where(PriceFact.id == fact.id)
            )
        ).one()
        assert row.price == Decimal("100")
        assert row.reason == "original"

    assert any(
        r.name == "menu_ledger.security" and r.levelname == "CRITICAL" for r in caplog.records
    )


async def test_history_pages_newest_first(ledger):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for i in range(5):
        await ledger.append("item-x", str(100 + i), "TRY", recorded_at=base + timedelta(days=i))

    page = await ledger.history("item-x", limit=2, offset=1)
    assert page.total_count == 5
    assert [f.price for f in page.facts] == [Decimal("103"), Decimal("102")]

    ascending = await ledger.history("item-x", order="asc", start=base + timedelta(days=3))
    assert [f.price for f in ascending.facts] == [Decimal("103"), Decimal("104")]


async def test_history_rejects_bad_paging(ledger):
    with pytest.raises(InvalidArgument):
        await ledger.history("item-x", limit=0)
    with pytest.raises(InvalidArgument):
        await ledger.history("item-x", offset=-1)
    with pytest.raises(InvalidArgument):
        await ledger.history("item-x", order="sideways")


async def test_history_for_items_is_chronological(ledger):
    base = datetime(2024, 3, 1, tzinfo=timezone.utc)
    await ledger.append("item-b", "20", "TRY", recorded_at=base + timedelta(hours=2))
    await ledger.append("item-a", "10", "TRY", recorded_at=base + timedelta(hours=1))
    await ledger.append("item-c", "30", "TRY", recorded_at=base)

    facts = await ledger.history_for_items(["item-a", "item-b"])
    assert [f.item_id for f in facts] == ["item-a", "item-b"]
    assert await ledger.history_for_items([]) == []


async def test_has_price_and_statistics(ledger):
    assert not await ledger.has_price("item-x")
    assert await ledger.statistics("item-x") is None

    for price in ("100", "80", "120"):
        await ledger.append("item-x", price, "TRY")

    assert await ledger.has_price("item-x")
    stats = await ledger.statistics("item-x")
    assert stats.change_count == 3
    assert stats.min_price == Decimal("80")
    assert stats.max_price == Decimal("120")
    assert stats.first_price == Decimal("100")
    assert stats.current_price == Decimal("120")
    assert stats.price_change == Decimal("20")
    assert stats.price_change_percent == Decimal("20.00")
    assert stats.average_price == Decimal("100.000")
