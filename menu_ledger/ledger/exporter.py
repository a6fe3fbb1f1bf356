"""
Compliance Exporter

Audit-ready documents built from stored ledger data:
    - export_for_compliance: one snapshot, verified first. A failed
      verification does not stop the export; the document carries
      integrity_failure=True and both hashes instead.
    - export_price_history: organization-wide price log over a date range
    - compare_snapshots: what changed between two published versions
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from menu_ledger.core.exceptions import InvalidArgument, NotFoundError
from menu_ledger.ledger.canonical import format_price
from menu_ledger.ledger.clock import as_utc, utc_now
from menu_ledger.ledger.price_ledger import PriceLedger
from menu_ledger.ledger.snapshot_store import SnapshotStore
from menu_ledger.ledger.verifier import IntegrityVerifier, VerificationResult
from menu_ledger.services.catalog.base import BaseCatalogReader

logger = logging.getLogger(__name__)


@dataclass
class ExportDocument:
    """A snapshot's full content plus its verification outcome."""
    snapshot_id: str
    organization_id: str
    version: int
    hash: str
    created_at: datetime
    content: dict[str, Any]
    verification: VerificationResult
    exported_at: datetime
    published_by: Optional[str] = None

    @property
    def integrity_failure(self) -> bool:
        return not self.verification.is_valid

    def to_dict(self) -> dict:
        return {
            "snapshot_id": self.snapshot_id,
            "organization_id": self.organization_id,
            "version": self.version,
            "hash": self.hash,
            "created_at": self.created_at.isoformat(),
            "published_by": self.published_by,
            "content": self.content,
            "verification": self.verification.to_dict(),
            "integrity_failure": self.integrity_failure,
            "exported_at": self.exported_at.isoformat(),
        }


@dataclass
class PriceHistoryExport:
    organization_id: str
    start: datetime
    end: datetime
    entries: list[dict[str, Any]]
    exported_at: datetime

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "date_range": {"start": self.start.isoformat(), "end": self.end.isoformat()},
            "entry_count": len(self.entries),
            "entries": self.entries,
            "exported_at": self.exported_at.isoformat(),
        }


@dataclass
class SnapshotComparison:
    organization_id: str
    from_version: int
    to_version: int
    identical: bool
    added_items: list[str] = field(default_factory=list)
    removed_items: list[str] = field(default_factory=list)
    added_categories: list[str] = field(default_factory=list)
    removed_categories: list[str] = field(default_factory=list)
    price_changes: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "identical": self.identical,
            "added_items": self.added_items,
            "removed_items": self.removed_items,
            "added_categories": self.added_categories,
            "removed_categories": self.removed_categories,
            "price_changes": self.price_changes,
        }


class ComplianceExporter:
    """Builds compliance documents from snapshots and the price ledger."""

    def __init__(
        self,
        store: SnapshotStore,
        verifier: IntegrityVerifier,
        ledger: Optional[PriceLedger] = None,
        catalog: Optional[BaseCatalogReader] = None,
    ):
        self.store = store
        self.verifier = verifier
        self.ledger = ledger
        self.catalog = catalog

    async def export_for_compliance(self, snapshot_id: str) -> ExportDocument:
        """
        Export one snapshot with its verification result.

        Raises:
            NotFoundError: Unknown snapshot id
        """
        snapshot = await self.store.get_by_id(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Snapshot not found: {snapshot_id}")

        verification = self.verifier.verify_snapshot(snapshot)
        document = ExportDocument(
            snapshot_id=snapshot.id,
            organization_id=snapshot.organization_id,
            version=snapshot.version,
            hash=snapshot.hash,
            created_at=as_utc(snapshot.created_at),
            content=snapshot.content,
            verification=verification,
            exported_at=utc_now(),
            published_by=snapshot.published_by,
        )
        if document.integrity_failure:
            logger.warning(
                f"Compliance export of snapshot {snapshot_id} carries an integrity failure"
            )
        else:
            logger.info(f"Compliance export of snapshot {snapshot_id} (v{snapshot.version})")
        return document

    async def export_price_history(
        self,
        organization_id: str,
        start: datetime,
        end: datetime,
    ) -> PriceHistoryExport:
        """Every price recorded for the organization's items between start and end."""
        if self.ledger is None or self.catalog is None:
            raise RuntimeError("Price history export needs a ledger and a catalog reader")
        start, end = as_utc(start), as_utc(end)
        if start > end:
            raise InvalidArgument("start must not be after end")

        organization = await self.catalog.get_organization(organization_id)
        if organization is None:
            raise NotFoundError(f"Organization not found: {organization_id}")

        item_ids = await self.catalog.get_item_ids(organization_id)
        facts = await self.ledger.history_for_items(item_ids, start=start, end=end)
        entries = [
            {
                "fact_id": f.id,
                "item_id": f.item_id,
                "price": format_price(f.price, f.currency),
                "currency": f.currency,
                "reason": f.reason,
                "recorded_by": f.recorded_by,
                "recorded_at": as_utc(f.recorded_at).isoformat(),
            }
            for f in facts
        ]
        logger.info(f"Price history export for {organization_id}: {len(entries)} entries")
        return PriceHistoryExport(
            organization_id=organization_id,
            start=start,
            end=end,
            entries=entries,
            exported_at=utc_now(),
        )

    async def compare_snapshots(
        self,
        organization_id: str,
        version_a: int,
        version_b: int,
    ) -> SnapshotComparison:
        """Differences going from version_a to version_b."""
        older = await self.store.get_by_version(organization_id, version_a)
        newer = await self.store.get_by_version(organization_id, version_b)
        if older is None or newer is None:
            missing = version_a if older is None else version_b
            raise NotFoundError(f"Snapshot version {missing} not found for {organization_id}")

        old_items = {i["id"]: i for i in older.content.get("items", [])}
        new_items = {i["id"]: i for i in newer.content.get("items", [])}
        old_categories = {c["id"] for c in older.content.get("categories", [])}
        new_categories = {c["id"] for c in newer.content.get("categories", [])}

        price_changes = []
        for item_id in sorted(old_items.keys() & new_items.keys()):
            before, after = old_items[item_id], new_items[item_id]
            if (before.get("price"), before.get("currency")) != (after.get("price"), after.get("currency")):
                price_changes.append({
                    "item_id": item_id,
                    "name": after.get("name"),
                    "old_price": before.get("price"),
                    "old_currency": before.get("currency"),
                    "new_price": after.get("price"),
                    "new_currency": after.get("currency"),
                })

        return SnapshotComparison(
            organization_id=organization_id,
            from_version=older.version,
            to_version=newer.version,
            identical=older.hash == newer.hash,
            added_items=sorted(new_items.keys() - old_items.keys()),
            removed_items=sorted(old_items.keys() - new_items.keys()),
            added_categories=sorted(new_categories - old_categories),
            removed_categories=sorted(old_categories - new_categories),
            price_changes=price_changes,
        )
