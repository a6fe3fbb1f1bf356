"""
Identity Provider Factory

Returns the Mock or SQL identity provider based on ENV_MODE.

Version: 1.0.0
"""

import logging
from functools import lru_cache

from menu_ledger.core.config import get_settings
from menu_ledger.services.identity.base import BaseIdentityProvider
from menu_ledger.services.identity.mock import MockIdentityProvider
from menu_ledger.services.identity.sql import SqlIdentityProvider

logger = logging.getLogger(__name__)


@lru_cache()
def get_identity_provider() -> BaseIdentityProvider:
    """Get the configured identity provider."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Identity Provider: Using MockIdentityProvider (development mode)")
        provider = MockIdentityProvider()
        provider.grant("user-demo-owner", "org-demo", "owner")
        return provider
    else:
        logger.info(f"Identity Provider: Using SqlIdentityProvider ({settings.env_mode.value} mode)")
        return SqlIdentityProvider()


def reset_identity_provider() -> None:
    """Clear the cached provider instance."""
    get_identity_provider.cache_clear()


__all__ = [
    "get_identity_provider",
    "reset_identity_provider",
    "BaseIdentityProvider",
]
