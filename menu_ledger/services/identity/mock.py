"""
Mock Identity Provider

In-memory membership table for development and tests.

Version: 1.0.0
"""

import logging
from typing import Optional

from menu_ledger.services.identity.base import BaseIdentityProvider

logger = logging.getLogger(__name__)


class MockIdentityProvider(BaseIdentityProvider):
    """Mock identity provider for development."""

    def __init__(self, memberships: Optional[dict[tuple[str, str], str]] = None):
        # (actor_id, organization_id) -> role
        self._memberships: dict[tuple[str, str], str] = dict(memberships or {})
        logger.info(f"MockIdentityProvider initialized ({len(self._memberships)} memberships)")

    @property
    def provider_name(self) -> str:
        return "mock"

    def grant(self, actor_id: str, organization_id: str, role: str) -> None:
        self._memberships[(actor_id, organization_id)] = role.lower()

    def revoke(self, actor_id: str, organization_id: str) -> None:
        self._memberships.pop((actor_id, organization_id), None)

    async def get_role(self, actor_id: str, organization_id: str) -> Optional[str]:
        return self._memberships.get((actor_id, organization_id))
