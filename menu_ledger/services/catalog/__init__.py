"""
Catalog Reader Factory

Returns the Mock or SQL catalog reader based on ENV_MODE.

Version: 1.0.0
"""

import logging
from functools import lru_cache

from menu_ledger.core.config import get_settings
from menu_ledger.services.catalog.base import (
    BaseCatalogReader,
    CatalogTree,
    CategoryRecord,
    ItemRecord,
    OrganizationRecord,
)
from menu_ledger.services.catalog.mock import MockCatalogReader
from menu_ledger.services.catalog.sql import SqlCatalogReader

logger = logging.getLogger(__name__)


@lru_cache()
def get_catalog_reader() -> BaseCatalogReader:
    """Get the configured catalog reader."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Catalog Reader: Using MockCatalogReader (development mode)")
        return MockCatalogReader()
    else:
        logger.info(f"Catalog Reader: Using SqlCatalogReader ({settings.env_mode.value} mode)")
        return SqlCatalogReader()


def reset_catalog_reader() -> None:
    """Clear the cached reader instance."""
    get_catalog_reader.cache_clear()


__all__ = [
    "get_catalog_reader",
    "reset_catalog_reader",
    "BaseCatalogReader",
    "CatalogTree",
    "CategoryRecord",
    "ItemRecord",
    "OrganizationRecord",
]
