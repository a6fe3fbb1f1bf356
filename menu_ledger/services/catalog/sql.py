"""
SQL Catalog Reader

Reads the CRUD layer's organizations/categories/items tables through its own
short-lived sessions. The organization, category and item reads of one
menu share a single REPEATABLE READ transaction on PostgreSQL, so the
builder sees one point-in-time view. SQLite only offers SERIALIZABLE.

Version: 1.0.0
"""

import logging
from typing import Optional

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menu_ledger.core.exceptions import CatalogReadError
from menu_ledger.database import get_session_maker
from menu_ledger.models import Category, Item, Organization
from menu_ledger.services.catalog.base import (
    BaseCatalogReader,
    CatalogTree,
    CategoryRecord,
    ItemRecord,
    OrganizationRecord,
    prune_hidden,
)

logger = logging.getLogger(__name__)


def snapshot_isolation_level(dialect_name: str) -> str:
    """Isolation level of the menu tree read for a database dialect."""
    if dialect_name == "postgresql":
        return "REPEATABLE READ"
    return "SERIALIZABLE"


def _organization_record(row: Organization) -> OrganizationRecord:
    return OrganizationRecord(
        id=row.id,
        name=row.name,
        slug=row.slug,
        logo_url=row.logo_url,
        cover_url=row.cover_url,
        settings=row.settings,
        is_active=bool(row.is_active),
    )


class SqlCatalogReader(BaseCatalogReader):
    """Catalog reader backed by the shared relational database."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or get_session_maker()
        logger.info("SqlCatalogReader initialized")

    @property
    def provider_name(self) -> str:
        return "sql"

    async def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        try:
            async with self._session_maker() as session:
                row = await session.get(Organization, organization_id)
                return _organization_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Organization read failed for {organization_id}: {e}")
            raise CatalogReadError("Could not read organization", detail=str(e)) from e

    async def get_organization_by_slug(self, slug: str) -> Optional[OrganizationRecord]:
        try:
            async with self._session_maker() as session:
                row = await session.scalar(select(Organization).where(Organization.slug == slug))
                return _organization_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Organization read failed for slug {slug}: {e}")
            raise CatalogReadError("Could not read organization", detail=str(e)) from e

    async def get_visible_categories_and_items(self, organization_id: str) -> CatalogTree:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.connection(execution_options={
                        "isolation_level": snapshot_isolation_level(session.get_bind().dialect.name),
                    })

                    row = await session.get(Organization, organization_id)
                    organization = _organization_record(row) if row else None

                    categories = await session.scalars(
                        select(Category)
                        .where(Category.organization_id == organization_id)
                        .order_by(Category.id)
                    )
                    category_records = [
                        CategoryRecord(
                            id=c.id,
                            name=c.name,
                            slug=c.slug,
                            parent_id=c.parent_id,
                            sort_order=c.sort_order or 0,
                            is_visible=bool(c.is_visible),
                        )
                        for c in categories
                    ]

                    items = await session.scalars(
                        select(Item)
                        .where(
                            Item.organization_id == organization_id,
                            Item.is_visible.is_(True),
                        )
                        .order_by(Item.id)
                    )
                    item_records = [
                        ItemRecord(
                            id=i.id,
                            name=i.name,
                            category_id=i.category_id,
                            description=i.description,
                            image_url=i.image_url,
                            allergens=i.allergens,
                            nutrition=i.nutrition,
                            sort_order=i.sort_order or 0,
                            is_visible=True,
                        )
                        for i in items
                    ]
        except SQLAlchemyError as e:
            logger.error(f"Menu tree read failed for {organization_id}: {e}")
            raise CatalogReadError("Could not read menu tree", detail=str(e)) from e

        return prune_hidden(organization, category_records, item_records)

    async def get_item_ids(self, organization_id: str) -> list[str]:
        try:
            async with self._session_maker() as session:
                result = await session.scalars(
                    select(Item.id).where(Item.organization_id == organization_id).order_by(Item.id)
                )
                return list(result)
        except SQLAlchemyError as e:
            logger.error(f"Item id read failed for {organization_id}: {e}")
            raise CatalogReadError("Could not read items", detail=str(e)) from e

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Catalog health check failed: {e}")
            return False
