"""
Price Ledger Store

Append-only persistence of price facts. A price change is never an UPDATE:
each change inserts a new PriceFact and the current price is derived from the
log (see projector.py).

Usage:
    ledger = PriceLedger(session)
    fact = await ledger.append("item-1", "120.00", "TRY", reason="Season start")
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from menu_ledger.core.exceptions import InvalidArgument
from menu_ledger.database import translate_storage_errors
from menu_ledger.ledger.canonical import currency_exponent
from menu_ledger.ledger.clock import as_utc, ledger_clock
from menu_ledger.models import PriceFact

logger = logging.getLogger(__name__)

_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

# Numeric(14, 3) leaves 11 integer digits
MAX_PRICE = Decimal("99999999999.999")


@dataclass
class PriceHistoryPage:
    """One page of an item's price history."""
    item_id: str
    facts: list[PriceFact]
    total_count: int
    limit: int
    offset: int


@dataclass
class PriceStatistics:
    """Summary of every price ever recorded for one item."""
    item_id: str
    currency: str
    change_count: int
    min_price: Decimal
    max_price: Decimal
    average_price: Decimal
    first_price: Decimal
    current_price: Decimal
    price_change: Decimal
    price_change_percent: Decimal
    currencies: list[str] = field(default_factory=list)


# =============================================================================
# VALIDATION
# =============================================================================

def normalize_currency(currency: Any) -> str:
    if not isinstance(currency, str):
        raise InvalidArgument("currency must be a 3-letter ISO 4217 code")
    code = currency.strip().upper()
    if not _CURRENCY_PATTERN.match(code):
        raise InvalidArgument(f"Invalid currency code: {currency!r}")
    return code


def normalize_price(price: Any, currency: str) -> Decimal:
    """
    Coerce `price` to a Decimal and check it against the currency's precision.

    Floats go through str() so 12.5 becomes Decimal("12.5"), not its binary
    expansion.
    """
    if isinstance(price, bool) or price is None:
        raise InvalidArgument("price must be a positive decimal")
    try:
        value = price if isinstance(price, Decimal) else Decimal(str(price).strip())
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f"price is not a number: {price!r}")

    if not value.is_finite():
        raise InvalidArgument("price must be finite")
    if value <= 0:
        raise InvalidArgument("price must be greater than zero")
    if value > MAX_PRICE:
        raise InvalidArgument("price exceeds the storable range")

    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    if value != value.quantize(quantum):
        raise InvalidArgument(
            f"{currency} prices allow at most {exponent} decimal places, got {value}"
        )
    return value.quantize(quantum)


def _require_item_id(item_id: Any) -> str:
    if not isinstance(item_id, str) or not item_id.strip():
        raise InvalidArgument("item_id must be a non-empty string")
    return item_id.strip()


# =============================================================================
# LEDGER STORE
# =============================================================================

class PriceLedger:
    """Insert-only access to the price_facts table."""

    def __init__(self, session: AsyncSession, max_history_limit: int = 1000):
        self.session = session
        self.max_history_limit = max_history_limit

    async def append(
        self,
        item_id: str,
        price: Any,
        currency: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> PriceFact:
        """
        Record a new price for an item.

        Args:
            item_id: Item identifier (existence is the caller's concern)
            price: Positive amount; Decimal, int, float or numeric string
            currency: ISO 4217 code, case-insensitive
            reason: Optional free-text justification
            actor: Id of the user recording the change
            recorded_at: Explicit timestamp for imports; defaults to the
                process-wide monotonic clock

        Returns:
            The persisted PriceFact, committed before returning

        Raises:
            InvalidArgument: On any malformed input
        """
        item_id = _require_item_id(item_id)
        code = normalize_currency(currency)
        amount = normalize_price(price, code)
        timestamp = as_utc(recorded_at) if recorded_at is not None else ledger_clock.now()

        fact = PriceFact(
            item_id=item_id,
            price=amount,
            currency=code,
            reason=reason.strip() if reason and reason.strip() else None,
            recorded_by=actor,
            recorded_at=timestamp,
        )
        self.session.add(fact)
        async with translate_storage_errors():
            await self.session.commit()

        logger.info(f"Price recorded: {item_id} -> {amount} {code} (fact #{fact.id})")
        return fact

    async def history(
        self,
        item_id: str,
        limit: int = 100,
        offset: int = 0,
        order: str = "desc",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PriceHistoryPage:
        """Every price an item has had, newest first unless order='asc'."""
        item_id = _require_item_id(item_id)
        if limit < 1:
            raise InvalidArgument("limit must be at least 1")
        if offset < 0:
            raise InvalidArgument("offset must not be negative")
        if order not in ("asc", "desc"):
            raise InvalidArgument("order must be 'asc' or 'desc'")
        limit = min(limit, self.max_history_limit)

        conditions = [PriceFact.item_id == item_id]
        if start is not None:
            conditions.append(PriceFact.recorded_at >= as_utc(start))
        if end is not None:
            conditions.append(PriceFact.recorded_at <= as_utc(end))

        total = await self.session.scalar(
            select(func.count()).select_from(PriceFact).where(*conditions)
        )

        if order == "asc":
            ordering = (PriceFact.recorded_at.asc(), PriceFact.id.asc())
        else:
            ordering = (PriceFact.recorded_at.desc(), PriceFact.id.desc())

        result = await self.session.scalars(
            select(PriceFact).where(*conditions).order_by(*ordering).limit(limit).offset(offset)
        )
        return PriceHistoryPage(
            item_id=item_id,
            facts=list(result),
            total_count=total or 0,
            limit=limit,
            offset=offset,
        )

    async def history_for_items(
        self,
        item_ids: Iterable[str],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[PriceFact]:
        """Chronological facts for a set of items, for organization-wide audits."""
        ids = sorted(set(item_ids))
        if not ids:
            return []

        conditions = [PriceFact.item_id.in_(ids)]
        if start is not None:
            conditions.append(PriceFact.recorded_at >= as_utc(start))
        if end is not None:
            conditions.append(PriceFact.recorded_at <= as_utc(end))

        result = await self.session.scalars(
            select(PriceFact)
            .where(*conditions)
            .order_by(PriceFact.recorded_at.asc(), PriceFact.id.asc())
        )
        return list(result)

    async def has_price(self, item_id: str) -> bool:
        found = await self.session.scalar(
            select(PriceFact.id).where(PriceFact.item_id == _require_item_id(item_id)).limit(1)
        )
        return found is not None

    async def statistics(self, item_id: str) -> Optional[PriceStatistics]:
        """Price change statistics, or None when the item was never priced."""
        page = await self.history(item_id, limit=self.max_history_limit, order="asc")
        if not page.facts:
            return None

        prices = [Decimal(f.price) for f in page.facts]
        first, current = prices[0], prices[-1]
        change = current - first
        percent = (change / first * 100) if first > 0 else Decimal(0)

        return PriceStatistics(
            item_id=page.item_id,
            currency=page.facts[-1].currency,
            change_count=len(prices),
            min_price=min(prices),
            max_price=max(prices),
            average_price=(sum(prices) / len(prices)).quantize(Decimal("0.001")),
            first_price=first,
            current_price=current,
            price_change=change,
            price_change_percent=percent.quantize(Decimal("0.01")),
            currencies=sorted({f.currency for f in page.facts}),
        )
