"""
Menu Ledger Orchestration

The only entry points the rest of the application uses:
    - publish: membership role -> active organization -> feature gate ->
      build -> save (retrying version conflicts) -> menu.published event
    - get_snapshot: read side over store, verifier and exporter
    - record_price_change: ledger append -> price.changed event

Events are fire-and-forget: a failed notification is logged and never
changes the outcome of the call that triggered it.

Usage:
    publisher = MenuPublisher(session, catalog, identity, notifications)
    result = await publisher.publish("org-1", actor_id="user-1")
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from menu_ledger.core.config import Settings, get_settings
from menu_ledger.core.exceptions import (
    BuildFailed,
    CatalogReadError,
    ConcurrentVersionConflict,
    Forbidden,
    InvalidArgument,
    NotFoundError,
)
from menu_ledger.ledger.clock import as_utc
from menu_ledger.ledger.exporter import ComplianceExporter, ExportDocument
from menu_ledger.ledger.permissions import PermissionGate
from menu_ledger.ledger.price_ledger import PriceLedger
from menu_ledger.ledger.projector import PriceProjector
from menu_ledger.ledger.snapshot_builder import SnapshotBuilder
from menu_ledger.ledger.snapshot_store import SnapshotHistoryPage, SnapshotStore
from menu_ledger.ledger.verifier import IntegrityVerifier, VerificationResult
from menu_ledger.models import MenuSnapshot, PriceFact
from menu_ledger.services.catalog.base import BaseCatalogReader, OrganizationRecord
from menu_ledger.services.identity.base import BaseIdentityProvider
from menu_ledger.services.notifications.base import BaseNotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    snapshot_id: str
    organization_id: str
    version: int
    hash: str
    published_at: datetime
    attempts: int = 1


@dataclass
class SnapshotView:
    """A stored snapshot, optionally with a fresh verification."""
    snapshot: MenuSnapshot
    verification: Optional[VerificationResult] = None


SnapshotQueryResult = Union[SnapshotView, ExportDocument, SnapshotHistoryPage]


class MenuPublisher:
    """Wires the ledger components to the collaborators of one request."""

    def __init__(
        self,
        session: AsyncSession,
        catalog: BaseCatalogReader,
        identity: BaseIdentityProvider,
        notifications: BaseNotificationChannel,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.identity = identity
        self.notifications = notifications

        self.ledger = PriceLedger(session, max_history_limit=self.settings.price_history_max_limit)
        self.projector = PriceProjector(session)
        self.store = SnapshotStore(
            session,
            history_default_limit=self.settings.history_default_limit,
            history_max_limit=self.settings.history_max_limit,
        )
        self.builder = SnapshotBuilder(catalog, self.projector, self.store)
        self.verifier = IntegrityVerifier(self.store)
        self.exporter = ComplianceExporter(self.store, self.verifier, self.ledger, catalog)
        self.gate = PermissionGate(session)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _notify(self, channel: str, event: dict[str, Any]) -> None:
        try:
            result = await self.notifications.publish(channel, event)
            if not result.success:
                logger.warning(f"Event {event.get('type')} not delivered: {result.error_message}")
        except Exception as e:
            logger.error(f"Event {event.get('type')} publish raised: {e}")

    async def _load_organization(self, organization_id: str) -> OrganizationRecord:
        try:
            organization = await self.catalog.get_organization(organization_id)
        except CatalogReadError as e:
            raise BuildFailed(f"Could not read organization {organization_id}", detail=e.message) from e
        if organization is None:
            raise NotFoundError(f"Organization not found: {organization_id}")
        return organization

    async def require_member(self, actor_id: Optional[str], organization_id: str) -> str:
        """Role of the actor in the organization; Forbidden for non-members."""
        if not actor_id:
            raise Forbidden("Authentication required")
        role = await self.identity.get_role(actor_id, organization_id)
        if role is None:
            raise Forbidden("You are not a member of this organization")
        return role

    # =========================================================================
    # PUBLISH
    # =========================================================================

    async def publish(
        self,
        organization_id: str,
        actor_id: Optional[str],
        notes: Optional[str] = None,
    ) -> PublishResult:
        """
        Publish the organization's current menu as a new snapshot.

        Raises:
            Forbidden: Role, inactive organization or feature gate denied
            NotFoundError: Unknown organization
            BuildFailed: Reference data could not be read
            ConcurrentVersionConflict: Retries exhausted
        """
        role = await self.require_member(actor_id, organization_id)
        if role not in self.settings.publish_roles_list:
            raise Forbidden(f"Role '{role}' may not publish menus")

        organization = await self._load_organization(organization_id)
        if not organization.is_active:
            raise Forbidden("Organization is not active")

        feature_key = self.settings.publish_feature_key
        if not await self.gate.is_allowed(organization_id, feature_key):
            raise Forbidden(f"Menu publishing is not included in the current plan ({feature_key})")

        snapshot = await self.builder.build(organization_id, published_by=actor_id, notes=notes)

        attempts = 0
        max_attempts = 1 + max(self.settings.publish_max_retries, 0)
        while True:
            attempts += 1
            try:
                saved = await self.store.save(snapshot)
                break
            except ConcurrentVersionConflict:
                if attempts >= max_attempts:
                    logger.error(
                        f"Publish of {organization_id} gave up after {attempts} version conflicts"
                    )
                    raise
                # Content stays as read; only the version is reassigned
                next_version = await self.store.last_version(organization_id) + 1
                logger.info(
                    f"Version conflict publishing {organization_id}, retrying as v{next_version}"
                )
                snapshot = MenuSnapshot(
                    id=snapshot.id,
                    organization_id=snapshot.organization_id,
                    version=next_version,
                    content=snapshot.content,
                    hash=snapshot.hash,
                    published_by=snapshot.published_by,
                    notes=snapshot.notes,
                    created_at=snapshot.created_at,
                )

        result = PublishResult(
            snapshot_id=saved.id,
            organization_id=organization_id,
            version=saved.version,
            hash=saved.hash,
            published_at=as_utc(saved.created_at),
            attempts=attempts,
        )
        logger.info(f"Menu published: {organization_id} v{result.version} by {actor_id}")

        await self._notify(
            f"organization:{organization_id}",
            {
                "type": "menu.published",
                "organization_id": organization_id,
                "snapshot_id": result.snapshot_id,
                "version": result.version,
                "hash": result.hash,
                "published_at": result.published_at.isoformat(),
            },
        )
        return result

    # =========================================================================
    # READ SIDE
    # =========================================================================

    async def get_snapshot(
        self,
        organization_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        version: Optional[int] = None,
        history: bool = False,
        verify: bool = False,
        export: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
        actor_id: Optional[str] = None,
    ) -> SnapshotQueryResult:
        """
        Query snapshots.

        - history=True: newest-first page for organization_id
        - export=True: compliance export document
        - otherwise the snapshot by id, by version, or the latest one,
          with a verification result when verify=True

        When actor_id is given, it must be a member of the snapshot's
        organization. Internal callers (tasks) pass no actor.
        """
        if not organization_id and not snapshot_id:
            raise InvalidArgument("organization_id or snapshot_id is required")

        if history:
            if not organization_id:
                raise InvalidArgument("history requires organization_id")
            if actor_id is not None:
                await self.require_member(actor_id, organization_id)
            return await self.store.get_history(organization_id, limit=limit, offset=offset)

        if snapshot_id:
            snapshot = await self.store.get_by_id(snapshot_id)
            if snapshot is not None and organization_id and snapshot.organization_id != organization_id:
                snapshot = None
        elif version is not None:
            snapshot = await self.store.get_by_version(organization_id, version)
        else:
            snapshot = await self.store.get_latest(organization_id)

        if snapshot is None:
            raise NotFoundError("Snapshot not found")
        if actor_id is not None:
            await self.require_member(actor_id, snapshot.organization_id)

        if export:
            return await self.exporter.export_for_compliance(snapshot.id)
        verification = self.verifier.verify_snapshot(snapshot) if verify else None
        return SnapshotView(snapshot=snapshot, verification=verification)

    async def get_public_menu(self, slug: str) -> MenuSnapshot:
        """Latest published snapshot behind a guest-facing menu URL."""
        try:
            organization = await self.catalog.get_organization_by_slug(slug)
        except CatalogReadError as e:
            raise BuildFailed("Could not read organization", detail=e.message) from e
        if organization is None or not organization.is_active:
            raise NotFoundError(f"Menu not found: {slug}")

        snapshot = await self.store.get_latest(organization.id)
        if snapshot is None:
            raise NotFoundError(f"No published menu for {slug}")
        return snapshot

    # =========================================================================
    # PRICES
    # =========================================================================

    async def record_price_change(
        self,
        item_id: str,
        price: Any,
        currency: Optional[str] = None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> PriceFact:
        """Append a price fact and announce it."""
        if not actor_id:
            raise Forbidden("Authentication required")

        fact = await self.ledger.append(
            item_id,
            price,
            currency or self.settings.default_currency,
            reason=reason,
            actor=actor_id,
            recorded_at=recorded_at,
        )
        await self._notify(
            f"item:{fact.item_id}",
            {
                "type": "price.changed",
                "item_id": fact.item_id,
                "fact_id": fact.id,
                "price": str(fact.price),
                "currency": fact.currency,
                "recorded_at": as_utc(fact.recorded_at).isoformat(),
            },
        )
        return fact
