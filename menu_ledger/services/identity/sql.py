"""
SQL Identity Provider

Reads roles from the organization_members table.

Version: 1.0.0
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menu_ledger.database import get_session_maker
from menu_ledger.models import OrganizationMember
from menu_ledger.services.identity.base import BaseIdentityProvider

logger = logging.getLogger(__name__)


class SqlIdentityProvider(BaseIdentityProvider):
    """Identity provider backed by organization_members."""

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker or get_session_maker()

    @property
    def provider_name(self) -> str:
        return "sql"

    async def get_role(self, actor_id: str, organization_id: str) -> Optional[str]:
        async with self._session_maker() as session:
            role = await session.scalar(
                select(OrganizationMember.role).where(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.user_id == actor_id,
                )
            )
        return role.lower() if role else None
