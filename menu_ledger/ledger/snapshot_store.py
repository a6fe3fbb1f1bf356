"""
Snapshot Store & History

Write-once persistence of menu snapshots with per-organization versions that
start at 1 and have no gaps. This component has no update or delete path;
storage triggers reject both anyway.

Racing publishers are separated by the unique (organization_id, version)
constraint: the loser gets ConcurrentVersionConflict and may retry.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from menu_ledger.core.exceptions import ConcurrentVersionConflict, InvalidArgument
from menu_ledger.database import translate_storage_errors
from menu_ledger.ledger.canonical import content_hash
from menu_ledger.models import MenuSnapshot

logger = logging.getLogger(__name__)


@dataclass
class SnapshotHistoryPage:
    """Newest-first page of an organization's snapshots."""
    organization_id: str
    items: list[MenuSnapshot]
    total_count: int
    limit: int
    offset: int


def validate_version(version: Any) -> int:
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidArgument(f"version must be an integer, got {version!r}")
    if version < 1:
        raise InvalidArgument("version must be at least 1")
    return version


class SnapshotStore:
    """Access to the menu_snapshots table."""

    def __init__(
        self,
        session: AsyncSession,
        history_default_limit: int = 50,
        history_max_limit: int = 100,
    ):
        self.session = session
        self.history_default_limit = history_default_limit
        self.history_max_limit = history_max_limit

    async def last_version(self, organization_id: str) -> int:
        """Highest saved version for the organization, 0 when none."""
        latest = await self.session.scalar(
            select(func.max(MenuSnapshot.version)).where(
                MenuSnapshot.organization_id == organization_id
            )
        )
        return latest or 0

    async def save(self, snapshot: MenuSnapshot) -> MenuSnapshot:
        """
        Persist a built snapshot.

        Raises:
            InvalidArgument: The hash does not match the content
            ConcurrentVersionConflict: The version is not last_version + 1,
                or another writer inserted it first
        """
        validate_version(snapshot.version)
        if snapshot.hash != content_hash(snapshot.content):
            raise InvalidArgument("Snapshot hash does not match its content")

        expected = await self.last_version(snapshot.organization_id) + 1
        if snapshot.version != expected:
            raise ConcurrentVersionConflict(
                snapshot.organization_id,
                snapshot.version,
                detail=f"expected version {expected}",
            )

        self.session.add(snapshot)
        try:
            async with translate_storage_errors():
                await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(
                f"Version {snapshot.version} of {snapshot.organization_id} "
                f"was claimed by a concurrent publish"
            )
            raise ConcurrentVersionConflict(
                snapshot.organization_id,
                snapshot.version,
                detail=str(e.orig),
            ) from e

        logger.info(
            f"Snapshot saved: {snapshot.organization_id} v{snapshot.version} "
            f"({snapshot.hash[:12]})"
        )
        return snapshot

    async def get_latest(self, organization_id: str) -> Optional[MenuSnapshot]:
        return await self.session.scalar(
            select(MenuSnapshot)
            .where(MenuSnapshot.organization_id == organization_id)
            .order_by(MenuSnapshot.version.desc())
            .limit(1)
        )

    async def get_by_id(self, snapshot_id: str) -> Optional[MenuSnapshot]:
        return await self.session.get(MenuSnapshot, snapshot_id)

    async def get_by_version(self, organization_id: str, version: Any) -> Optional[MenuSnapshot]:
        version = validate_version(version)
        return await self.session.scalar(
            select(MenuSnapshot).where(
                MenuSnapshot.organization_id == organization_id,
                MenuSnapshot.version == version,
            )
        )

    async def get_history(
        self,
        organization_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SnapshotHistoryPage:
        """
        Snapshots ordered by version descending.

        `limit` defaults to history_default_limit and is clamped to
        history_max_limit.
        """
        if limit is None:
            limit = self.history_default_limit
        if limit < 1:
            raise InvalidArgument("limit must be at least 1")
        if offset < 0:
            raise InvalidArgument("offset must not be negative")
        limit = min(limit, self.history_max_limit)

        total = await self.session.scalar(
            select(func.count())
            .select_from(MenuSnapshot)
            .where(MenuSnapshot.organization_id == organization_id)
        )
        result = await self.session.scalars(
            select(MenuSnapshot)
            .where(MenuSnapshot.organization_id == organization_id)
            .order_by(MenuSnapshot.version.desc())
            .limit(limit)
            .offset(offset)
        )
        return SnapshotHistoryPage(
            organization_id=organization_id,
            items=list(result),
            total_count=total or 0,
            limit=limit,
            offset=offset,
        )

    async def list_recent(self, limit: int) -> list[MenuSnapshot]:
        """Most recently created snapshots across all organizations."""
        if limit < 1:
            raise InvalidArgument("limit must be at least 1")
        result = await self.session.scalars(
            select(MenuSnapshot)
            .order_by(MenuSnapshot.created_at.desc(), MenuSnapshot.id)
            .limit(limit)
        )
        return list(result)
