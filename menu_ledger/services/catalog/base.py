"""
Catalog Reader Abstract Base Class

Read-only access to the reference data (organizations, categories, items)
owned by the menu CRUD layer. The snapshot builder only ever sees menus
through this interface.

Supports both Mock (development) and SQL (production) implementations.

Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class OrganizationRecord:
    """Organization metadata copied into a snapshot."""
    id: str
    name: str
    slug: str
    logo_url: Optional[str] = None
    cover_url: Optional[str] = None
    settings: Optional[dict] = None
    is_active: bool = True


@dataclass
class CategoryRecord:
    id: str
    name: str
    slug: str
    parent_id: Optional[str] = None
    sort_order: int = 0
    is_visible: bool = True


@dataclass
class ItemRecord:
    id: str
    name: str
    category_id: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    allergens: Optional[list[str]] = None
    nutrition: Optional[dict[str, Any]] = None
    sort_order: int = 0
    is_visible: bool = True


@dataclass
class CatalogTree:
    """Organization metadata plus its visible categories and items, read at one point in time."""
    organization: Optional[OrganizationRecord] = None
    categories: list[CategoryRecord] = field(default_factory=list)
    items: list[ItemRecord] = field(default_factory=list)


def prune_hidden(
    organization: Optional[OrganizationRecord],
    categories: list[CategoryRecord],
    items: list[ItemRecord],
) -> CatalogTree:
    """
    Drop everything flagged hidden.

    Categories and items are filtered on their own flag only. A visible item
    inside a hidden category stays in the menu.
    """
    return CatalogTree(
        organization=organization,
        categories=[c for c in categories if c.is_visible],
        items=[i for i in items if i.is_visible],
    )


class BaseCatalogReader(ABC):
    """Abstract base class for reference-data readers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        """
        Fetch one organization.

        Returns None when it does not exist. Raises CatalogReadError when the
        underlying source fails.
        """
        pass

    @abstractmethod
    async def get_organization_by_slug(self, slug: str) -> Optional[OrganizationRecord]:
        """Fetch one organization by its public slug."""
        pass

    @abstractmethod
    async def get_visible_categories_and_items(self, organization_id: str) -> CatalogTree:
        """
        Read the organization and its visible menu tree in a single consistent read.

        The returned tree has organization None when the organization does not exist.
        """
        pass

    @abstractmethod
    async def get_item_ids(self, organization_id: str) -> list[str]:
        """Every item id of the organization, visible or not."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check source connectivity."""
        pass
