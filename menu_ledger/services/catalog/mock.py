"""
Mock Catalog Reader

In-memory reference data for development and tests. Seeded with a small demo
café unless told otherwise; tests mutate it through the helper methods.

Version: 1.0.0
"""

import asyncio
import copy
import logging
import random
from typing import Optional

from menu_ledger.core.exceptions import CatalogReadError
from menu_ledger.services.catalog.base import (
    BaseCatalogReader,
    CatalogTree,
    CategoryRecord,
    ItemRecord,
    OrganizationRecord,
    prune_hidden,
)

logger = logging.getLogger(__name__)

DEMO_ORGANIZATION_ID = "org-demo"


class MockCatalogReader(BaseCatalogReader):
    """Mock catalog reader for development."""

    def __init__(self, failure_rate: float = 0.0, latency: float = 0.0, seed_demo: bool = True):
        self.failure_rate = failure_rate
        self.latency = latency
        self._organizations: dict[str, OrganizationRecord] = {}
        self._categories: dict[str, dict[str, CategoryRecord]] = {}
        self._items: dict[str, dict[str, ItemRecord]] = {}
        self._fail_next = False

        if seed_demo:
            self._seed_demo()
        logger.info(f"MockCatalogReader initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    # =========================================================================
    # TEST / DEMO HELPERS
    # =========================================================================

    def add_organization(self, organization: OrganizationRecord) -> None:
        self._organizations[organization.id] = organization
        self._categories.setdefault(organization.id, {})
        self._items.setdefault(organization.id, {})

    def add_category(self, organization_id: str, category: CategoryRecord) -> None:
        self._categories.setdefault(organization_id, {})[category.id] = category

    def add_item(self, organization_id: str, item: ItemRecord) -> None:
        self._items.setdefault(organization_id, {})[item.id] = item

    def set_item_visibility(self, organization_id: str, item_id: str, visible: bool) -> None:
        self._items[organization_id][item_id].is_visible = visible

    def rename_item(self, organization_id: str, item_id: str, name: str) -> None:
        self._items[organization_id][item_id].name = name

    def set_organization_active(self, organization_id: str, active: bool) -> None:
        self._organizations[organization_id].is_active = active

    def fail_next_read(self) -> None:
        """Make the next read raise CatalogReadError."""
        self._fail_next = True

    def _seed_demo(self) -> None:
        self.add_organization(OrganizationRecord(
            id=DEMO_ORGANIZATION_ID,
            name="Demo Café",
            slug="demo-cafe",
            settings={"theme": "light"},
        ))
        self.add_category(DEMO_ORGANIZATION_ID, CategoryRecord(
            id="cat-drinks", name="Drinks", slug="drinks", sort_order=1,
        ))
        self.add_category(DEMO_ORGANIZATION_ID, CategoryRecord(
            id="cat-desserts", name="Desserts", slug="desserts", sort_order=2,
        ))
        self.add_item(DEMO_ORGANIZATION_ID, ItemRecord(
            id="item-tea", name="Turkish Tea", category_id="cat-drinks", sort_order=1,
        ))
        self.add_item(DEMO_ORGANIZATION_ID, ItemRecord(
            id="item-coffee", name="Turkish Coffee", category_id="cat-drinks", sort_order=2,
            allergens=["milk"],
        ))
        self.add_item(DEMO_ORGANIZATION_ID, ItemRecord(
            id="item-baklava", name="Baklava", category_id="cat-desserts", sort_order=1,
            allergens=["nuts", "gluten"],
        ))

    # =========================================================================
    # READS
    # =========================================================================

    async def _before_read(self, operation: str) -> None:
        if self.latency:
            await asyncio.sleep(random.uniform(0, self.latency))
        if self._fail_next or random.random() < self.failure_rate:
            self._fail_next = False
            logger.warning(f"Mock catalog read failed (simulated): {operation}")
            raise CatalogReadError(f"Simulated catalog failure during {operation}")

    async def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        await self._before_read("get_organization")
        organization = self._organizations.get(organization_id)
        return copy.deepcopy(organization) if organization else None

    async def get_organization_by_slug(self, slug: str) -> Optional[OrganizationRecord]:
        await self._before_read("get_organization_by_slug")
        for organization in self._organizations.values():
            if organization.slug == slug:
                return copy.deepcopy(organization)
        return None

    async def get_visible_categories_and_items(self, organization_id: str) -> CatalogTree:
        await self._before_read("get_visible_categories_and_items")
        organization = copy.deepcopy(self._organizations.get(organization_id))
        categories = copy.deepcopy(list(self._categories.get(organization_id, {}).values()))
        items = copy.deepcopy(list(self._items.get(organization_id, {}).values()))
        return prune_hidden(organization, categories, items)

    async def get_item_ids(self, organization_id: str) -> list[str]:
        await self._before_read("get_item_ids")
        return sorted(self._items.get(organization_id, {}))

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
