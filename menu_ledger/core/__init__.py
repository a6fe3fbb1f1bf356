"""
Core module initialization.
Exports configuration, logging utilities and the ledger error taxonomy.
"""

from menu_ledger.core.config import get_settings, Settings, EnvironmentMode
from menu_ledger.core.exceptions import (
    LedgerError,
    InvalidArgument,
    NotFoundError,
    Forbidden,
    ImmutabilityViolation,
    ConcurrentVersionConflict,
    BuildFailed,
    CatalogReadError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "LedgerError",
    "InvalidArgument",
    "NotFoundError",
    "Forbidden",
    "ImmutabilityViolation",
    "ConcurrentVersionConflict",
    "BuildFailed",
    "CatalogReadError",
]
