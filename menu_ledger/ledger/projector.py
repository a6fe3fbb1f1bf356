"""
Current-Price Projector

The current price of an item is the PriceFact with the greatest
(recorded_at, id). Ordering is by recorded_at; id only breaks ties, so a
backdated import appended later never displaces a newer price.

Nothing is cached: every call is a single query over price_facts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from menu_ledger.ledger.clock import as_utc
from menu_ledger.models import PriceFact


@dataclass(frozen=True)
class CurrentPrice:
    item_id: str
    price: Decimal
    currency: str
    recorded_at: datetime
    fact_id: int


def _to_current(fact_id, item_id, price, currency, recorded_at) -> CurrentPrice:
    return CurrentPrice(
        item_id=item_id,
        price=Decimal(price),
        currency=currency,
        recorded_at=as_utc(recorded_at),
        fact_id=fact_id,
    )


class PriceProjector:
    """Derives current prices from the ledger at read time."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def current_price_of(self, item_id: str) -> Optional[CurrentPrice]:
        """Latest price of one item, or None when it has never been priced."""
        row = (
            await self.session.execute(
                select(
                    PriceFact.id,
                    PriceFact.item_id,
                    PriceFact.price,
                    PriceFact.currency,
                    PriceFact.recorded_at,
                )
                .where(PriceFact.item_id == item_id)
                .order_by(PriceFact.recorded_at.desc(), PriceFact.id.desc())
                .limit(1)
            )
        ).first()
        return _to_current(*row) if row is not None else None

    async def current_prices_of(self, item_ids: Iterable[str]) -> dict[str, CurrentPrice]:
        """
        Latest price for each of `item_ids`.

        Items without any fact are absent from the returned map.
        """
        ids = sorted(set(item_ids))
        if not ids:
            return {}

        rank = (
            func.row_number()
            .over(
                partition_by=PriceFact.item_id,
                order_by=(PriceFact.recorded_at.desc(), PriceFact.id.desc()),
            )
            .label("rank")
        )
        ranked = (
            select(
                PriceFact.id,
                PriceFact.item_id,
                PriceFact.price,
                PriceFact.currency,
                PriceFact.recorded_at,
                rank,
            )
            .where(PriceFact.item_id.in_(ids))
            .subquery()
        )
        rows = await self.session.execute(
            select(
                ranked.c.id,
                ranked.c.item_id,
                ranked.c.price,
                ranked.c.currency,
                ranked.c.recorded_at,
            ).where(ranked.c.rank == 1)
        )
        return {row.item_id: _to_current(*row) for row in rows}
