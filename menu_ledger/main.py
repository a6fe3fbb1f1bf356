"""
FastAPI Application Entry Point

QR Menu Price Ledger - compliance-grade price log and menu snapshots.
Supports both Mock collaborators (development) and the shared database /
Redis (production).

Endpoints:
    - POST /api/prices: Record a price change
    - GET /api/items/{item_id}/price: Current price of an item
    - GET /api/items/{item_id}/prices: Price history of an item
    - POST /api/menu/publish: Publish a menu snapshot
    - GET /api/menu/snapshot: Snapshot / history / verification / export
    - POST /api/menu/snapshot/{snapshot_id}/excel: Queue a workbook export
    - GET /api/menu/compare: Differences between two versions
    - GET /api/menu/public/{slug}: Latest published menu for guests
    - GET /api/organizations/{organization_id}/price-history: Ledger extract
    - POST /api/organizations/{organization_id}/price-history/excel: Queue a ledger extract workbook
    - GET /api/organizations/{organization_id}/features/{feature_key}: Gate check
    - GET /health: System health check

The acting user is identified by the X-Actor-Id header set by the
authentication proxy.

Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from menu_ledger.core.config import get_settings, setup_logging
from menu_ledger.core.exceptions import InvalidArgument, LedgerError, NotFoundError
from menu_ledger.database import get_db, get_engine, get_session_maker, init_db
from menu_ledger.ledger.canonical import format_price
from menu_ledger.ledger.clock import as_utc, utc_now
from menu_ledger.ledger.exporter import ExportDocument
from menu_ledger.ledger.permissions import seed_demo_plan
from menu_ledger.ledger.publisher import MenuPublisher, SnapshotView
from menu_ledger.ledger.snapshot_store import SnapshotHistoryPage
from menu_ledger.models import MenuSnapshot, PriceFact
from menu_ledger.schemas import (
    ComplianceExportResponse,
    CurrentPriceResponse,
    ErrorResponse,
    FeatureCheckResponse,
    FeatureLimitResponse,
    HealthResponse,
    PriceChangeCreate,
    PriceFactResponse,
    PriceHistoryExportResponse,
    PriceHistoryResponse,
    PublishRequest,
    PublishResponse,
    SnapshotComparisonResponse,
    SnapshotHistoryResponse,
    SnapshotResponse,
    SnapshotSummary,
    VerificationResponse,
)
from menu_ledger.services.catalog import BaseCatalogReader, get_catalog_reader
from menu_ledger.services.catalog.mock import DEMO_ORGANIZATION_ID
from menu_ledger.services.identity import BaseIdentityProvider, get_identity_provider
from menu_ledger.services.notifications import BaseNotificationChannel, get_notification_channel
from menu_ledger.tasks import export_price_history_to_excel, export_snapshot_to_excel

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database (tables + append-only triggers)
    await init_db()
    logger.info("✅ Database initialized")

    # Demo organization can publish out of the box in development
    if settings.is_development:
        async with get_session_maker()() as session:
            await seed_demo_plan(session, DEMO_ORGANIZATION_ID, settings.publish_feature_key)

    # Log collaborator configuration
    logger.info(f"✅ Catalog Reader: {get_catalog_reader().provider_name}")
    logger.info(f"✅ Identity Provider: {get_identity_provider().provider_name}")
    logger.info(f"✅ Notification Channel: {get_notification_channel().provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await get_engine().dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Append-only price ledger and hash-verified menu snapshots for "
        "restaurant QR menus, built for regulatory price audits."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES & HELPERS
# =============================================================================

async def get_publisher(
    db: AsyncSession = Depends(get_db),
    catalog: BaseCatalogReader = Depends(get_catalog_reader),
    identity: BaseIdentityProvider = Depends(get_identity_provider),
    notifications: BaseNotificationChannel = Depends(get_notification_channel),
) -> MenuPublisher:
    """Request-scoped orchestrator over the request's session."""
    return MenuPublisher(db, catalog, identity, notifications, settings=settings)


def fact_response(fact: PriceFact) -> PriceFactResponse:
    return PriceFactResponse(
        id=fact.id,
        item_id=fact.item_id,
        price=format_price(fact.price, fact.currency),
        currency=fact.currency,
        reason=fact.reason,
        recorded_by=fact.recorded_by,
        recorded_at=as_utc(fact.recorded_at),
    )


def snapshot_response(snapshot: MenuSnapshot, verification=None) -> SnapshotResponse:
    return SnapshotResponse(
        id=snapshot.id,
        organization_id=snapshot.organization_id,
        version=snapshot.version,
        hash=snapshot.hash,
        content=snapshot.content,
        published_by=snapshot.published_by,
        notes=snapshot.notes,
        created_at=as_utc(snapshot.created_at),
        verification=VerificationResponse(**verification.to_dict()) if verification else None,
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🧾 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    catalog: BaseCatalogReader = Depends(get_catalog_reader),
    notifications: BaseNotificationChannel = Depends(get_notification_channel),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    catalog_status = "healthy" if await catalog.health_check() else "unhealthy"
    notification_status = "healthy" if await notifications.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, catalog_status, notification_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        catalog_service=catalog_status,
        notification_service=notification_status,
        timestamp=utc_now(),
    )


# =============================================================================
# PRICE ENDPOINTS
# =============================================================================

@app.post(
    "/api/prices",
    response_model=PriceFactResponse,
    status_code=201,
    tags=["Prices"],
    summary="Record Price Change",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def record_price(
    payload: PriceChangeCreate,
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> PriceFactResponse:
    """Append a new price to the ledger. Prices are never edited in place."""
    fact = await publisher.record_price_change(
        payload.item_id,
        payload.price,
        payload.currency,
        reason=payload.reason,
        actor_id=x_actor_id,
    )
    return fact_response(fact)


@app.get(
    "/api/items/{item_id}/price",
    response_model=CurrentPriceResponse,
    tags=["Prices"],
    responses={404: {"model": ErrorResponse}},
)
async def current_price(
    item_id: str,
    publisher: MenuPublisher = Depends(get_publisher),
) -> CurrentPriceResponse:
    """Current price of an item (latest ledger entry)."""
    current = await publisher.projector.current_price_of(item_id)
    if current is None:
        raise NotFoundError(f"No price has been set for item {item_id}")
    return CurrentPriceResponse(
        item_id=current.item_id,
        price=format_price(current.price, current.currency),
        currency=current.currency,
        recorded_at=current.recorded_at,
        fact_id=current.fact_id,
    )


@app.get(
    "/api/items/{item_id}/prices",
    response_model=PriceHistoryResponse,
    tags=["Prices"],
)
async def price_history(
    item_id: str,
    limit: int = Query(100, ge=1),
    offset: int = Query(0, ge=0),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> PriceHistoryResponse:
    """Paginated price history of an item."""
    page = await publisher.ledger.history(
        item_id, limit=limit, offset=offset, order=order, start=start, end=end
    )
    return PriceHistoryResponse(
        item_id=page.item_id,
        total=page.total_count,
        limit=page.limit,
        offset=page.offset,
        entries=[fact_response(f) for f in page.facts],
    )


# =============================================================================
# MENU SNAPSHOT ENDPOINTS
# =============================================================================

@app.post(
    "/api/menu/publish",
    response_model=PublishResponse,
    status_code=201,
    tags=["Menu"],
    summary="Publish Menu Snapshot",
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def publish_menu(
    payload: PublishRequest,
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> PublishResponse:
    """Capture the current menu as a new immutable, hashed version."""
    result = await publisher.publish(payload.organization_id, x_actor_id, notes=payload.notes)
    return PublishResponse(
        snapshot_id=result.snapshot_id,
        organization_id=result.organization_id,
        version=result.version,
        hash=result.hash,
        published_at=result.published_at,
    )


@app.get(
    "/api/menu/snapshot",
    tags=["Menu"],
    summary="Query Menu Snapshots",
    responses={
        200: {"model": SnapshotResponse},
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def get_snapshot(
    organization_id: Optional[str] = Query(None),
    snapshot_id: Optional[str] = Query(None),
    version: Optional[int] = Query(None),
    history: bool = Query(False),
    verify: bool = Query(False),
    export: bool = Query(False),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
):
    """
    Snapshot by id, by version or latest; history page with history=true;
    hash verification with verify=true; compliance document with export=true.
    """
    result = await publisher.get_snapshot(
        organization_id=organization_id,
        snapshot_id=snapshot_id,
        version=version,
        history=history,
        verify=verify,
        export=export,
        limit=limit,
        offset=offset,
        actor_id=x_actor_id or "",
    )

    if isinstance(result, SnapshotHistoryPage):
        return SnapshotHistoryResponse(
            organization_id=result.organization_id,
            total=result.total_count,
            limit=result.limit,
            offset=result.offset,
            snapshots=[
                SnapshotSummary(
                    id=s.id,
                    version=s.version,
                    hash=s.hash,
                    published_by=s.published_by,
                    created_at=as_utc(s.created_at),
                )
                for s in result.items
            ],
        )
    if isinstance(result, ExportDocument):
        return ComplianceExportResponse(**result.to_dict())
    if isinstance(result, SnapshotView):
        return snapshot_response(result.snapshot, result.verification)
    raise TypeError(f"Unexpected snapshot query result: {type(result).__name__}")


@app.post(
    "/api/menu/snapshot/{snapshot_id}/excel",
    status_code=202,
    tags=["Menu"],
    summary="Queue Compliance Workbook",
)
async def queue_snapshot_workbook(
    snapshot_id: str,
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> dict[str, str]:
    """Queue an Excel compliance workbook for a snapshot (Celery)."""
    await publisher.get_snapshot(snapshot_id=snapshot_id, actor_id=x_actor_id or "")

    task = export_snapshot_to_excel.delay(snapshot_id)
    logger.info(f"📤 Workbook export queued for snapshot {snapshot_id}: task {task.id}")
    return {"status": "queued", "snapshot_id": snapshot_id, "task_id": task.id}


@app.get(
    "/api/menu/compare",
    response_model=SnapshotComparisonResponse,
    tags=["Menu"],
)
async def compare_snapshots(
    organization_id: str = Query(...),
    from_version: int = Query(...),
    to_version: int = Query(...),
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> SnapshotComparisonResponse:
    """What changed between two published versions."""
    await publisher.require_member(x_actor_id, organization_id)
    comparison = await publisher.exporter.compare_snapshots(organization_id, from_version, to_version)
    return SnapshotComparisonResponse(**comparison.to_dict())


@app.get(
    "/api/menu/public/{slug}",
    response_model=SnapshotResponse,
    tags=["Menu"],
    responses={404: {"model": ErrorResponse}},
)
async def public_menu(
    slug: str,
    publisher: MenuPublisher = Depends(get_publisher),
) -> SnapshotResponse:
    """Latest published menu shown to guests scanning the QR code."""
    snapshot = await publisher.get_public_menu(slug)
    return snapshot_response(snapshot)


# =============================================================================
# ORGANIZATION ENDPOINTS
# =============================================================================

@app.get(
    "/api/organizations/{organization_id}/price-history",
    response_model=PriceHistoryExportResponse,
    tags=["Compliance"],
)
async def organization_price_history(
    organization_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> PriceHistoryExportResponse:
    """Every price recorded for the organization's items in a date range."""
    await publisher.require_member(x_actor_id, organization_id)
    export = await publisher.exporter.export_price_history(organization_id, start, end)
    return PriceHistoryExportResponse(**export.to_dict())


@app.post(
    "/api/organizations/{organization_id}/price-history/excel",
    status_code=202,
    tags=["Compliance"],
    summary="Queue Price History Workbook",
)
async def queue_price_history_workbook(
    organization_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> dict[str, str]:
    """Queue an Excel extract of the organization's price history (Celery)."""
    await publisher.require_member(x_actor_id, organization_id)
    start, end = as_utc(start), as_utc(end)
    if start > end:
        raise InvalidArgument("start must not be after end")

    task = export_price_history_to_excel.delay(organization_id, start.isoformat(), end.isoformat())
    logger.info(f"📤 Price history export queued for {organization_id}: task {task.id}")
    return {"status": "queued", "organization_id": organization_id, "task_id": task.id}


@app.get(
    "/api/organizations/{organization_id}/features/{feature_key}",
    response_model=FeatureCheckResponse,
    tags=["Features"],
)
async def check_feature(
    organization_id: str,
    feature_key: str,
    x_actor_id: Optional[str] = Header(None),
    publisher: MenuPublisher = Depends(get_publisher),
) -> FeatureCheckResponse:
    """Resolve a feature for the organization (override, then plan)."""
    await publisher.require_member(x_actor_id, organization_id)
    decision = await publisher.gate.check(organization_id, feature_key)
    return FeatureCheckResponse(
        organization_id=organization_id,
        feature_key=feature_key,
        allowed=decision.allowed,
        source=decision.source,
        plan_name=decision.plan_name,
        limit=(
            FeatureLimitResponse(value=decision.limit.value, unlimited=decision.limit.unlimited)
            if decision.limit else None
        ),
        expires_at=decision.expires_at,
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render domain errors with their own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.url.path}: {exc.message}")

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
