"""
Snapshot Builder

Assembles the self-contained, canonical payload of an organization's visible
menu with every item's current price, hashes it and assigns the next version.
Nothing is written here: the built snapshot only exists in memory until
SnapshotStore.save().

Payload layout:
    {
        "organization": {id, name, slug, logo_url, cover_url, settings},
        "categories":   [{id, name, slug, parent_id, sort_order}, ...],
        "items":        [{id, name, description, category_id, image_url,
                          allergens, nutrition, sort_order, price, currency}, ...],
        "metadata":     {category_count, item_count, unpriced_count}
    }

Unpriced items stay in the list with price and currency set to null. The
payload carries no wall-clock time, so rebuilding unchanged data reproduces
the same hash.
"""

import logging
import uuid
from typing import Optional

from menu_ledger.core.exceptions import BuildFailed, CatalogReadError, NotFoundError
from menu_ledger.ledger.canonical import content_hash, normalize_payload, price_or_none
from menu_ledger.ledger.clock import ledger_clock
from menu_ledger.ledger.projector import CurrentPrice, PriceProjector
from menu_ledger.ledger.snapshot_store import SnapshotStore
from menu_ledger.models import MenuSnapshot
from menu_ledger.services.catalog.base import (
    BaseCatalogReader,
    CatalogTree,
    OrganizationRecord,
)

logger = logging.getLogger(__name__)


def assemble_payload(
    organization: OrganizationRecord,
    tree: CatalogTree,
    prices: dict[str, CurrentPrice],
) -> dict:
    """Build the normalized snapshot payload in its deterministic order."""
    categories = sorted(tree.categories, key=lambda c: (c.sort_order, c.name, c.id))
    position = {c.id: index for index, c in enumerate(categories)}

    # Uncategorized items go after every category
    uncategorized = len(categories)
    items = sorted(
        tree.items,
        key=lambda i: (position.get(i.category_id, uncategorized), i.sort_order, i.name, i.id),
    )

    item_entries = []
    unpriced = 0
    for item in items:
        current = prices.get(item.id)
        if current is None:
            unpriced += 1
        item_entries.append({
            "id": item.id,
            "name": item.name,
            "description": item.description,
            "category_id": item.category_id,
            "image_url": item.image_url,
            "allergens": item.allergens,
            "nutrition": item.nutrition,
            "sort_order": item.sort_order,
            "price": price_or_none(current.price, current.currency) if current else None,
            "currency": current.currency if current else None,
        })

    payload = {
        "organization": {
            "id": organization.id,
            "name": organization.name,
            "slug": organization.slug,
            "logo_url": organization.logo_url,
            "cover_url": organization.cover_url,
            "settings": organization.settings,
        },
        "categories": [
            {
                "id": c.id,
                "name": c.name,
                "slug": c.slug,
                "parent_id": c.parent_id,
                "sort_order": c.sort_order,
            }
            for c in categories
        ],
        "items": item_entries,
        "metadata": {
            "category_count": len(categories),
            "item_count": len(item_entries),
            "unpriced_count": unpriced,
        },
    }
    return normalize_payload(payload)


class SnapshotBuilder:
    """Builds unsaved MenuSnapshot rows."""

    def __init__(self, catalog: BaseCatalogReader, projector: PriceProjector, store: SnapshotStore):
        self.catalog = catalog
        self.projector = projector
        self.store = store

    async def build_payload(self, organization_id: str) -> dict:
        """
        Read reference data and prices and return the canonical payload.

        Raises:
            NotFoundError: Unknown organization
            BuildFailed: The catalog could not be read
        """
        try:
            tree = await self.catalog.get_visible_categories_and_items(organization_id)
        except CatalogReadError as e:
            logger.error(f"Snapshot build failed for {organization_id}: {e.message}")
            raise BuildFailed(f"Could not read menu of {organization_id}", detail=e.message) from e
        if tree.organization is None:
            raise NotFoundError(f"Organization not found: {organization_id}")

        prices = await self.projector.current_prices_of(i.id for i in tree.items)
        return assemble_payload(tree.organization, tree, prices)

    async def build(
        self,
        organization_id: str,
        published_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MenuSnapshot:
        """Build the next snapshot for the organization. Not persisted."""
        payload = await self.build_payload(organization_id)
        version = await self.store.last_version(organization_id) + 1

        snapshot = MenuSnapshot(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            version=version,
            content=payload,
            hash=content_hash(payload),
            published_by=published_by,
            notes=notes,
            created_at=ledger_clock.now(),
        )
        logger.debug(
            f"Built snapshot {organization_id} v{version}: "
            f"{payload['metadata']['item_count']} items, hash {snapshot.hash[:12]}"
        )
        return snapshot
