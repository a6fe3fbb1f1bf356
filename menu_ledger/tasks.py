"""
Celery Tasks
Background jobs for compliance exports and the periodic integrity sweep.

Tasks are synchronous Celery functions driving the async ledger code with
asyncio.run(). Each run builds its own engine and disposes it afterwards,
since async connections cannot cross event loops.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menu_ledger.celery_worker import celery_app
from menu_ledger.core.config import get_settings
from menu_ledger.database import create_engine_for
from menu_ledger.ledger.clock import utc_now
from menu_ledger.ledger.exporter import ComplianceExporter
from menu_ledger.ledger.price_ledger import PriceLedger
from menu_ledger.ledger.snapshot_store import SnapshotStore
from menu_ledger.ledger.verifier import IntegrityVerifier
from menu_ledger.services.catalog import get_catalog_reader
from menu_ledger.services.catalog.base import BaseCatalogReader
from menu_ledger.services.catalog.sql import SqlCatalogReader
from menu_ledger.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


def _catalog_for(session_maker: async_sessionmaker[AsyncSession]) -> BaseCatalogReader:
    if get_settings().use_real_services:
        return SqlCatalogReader(session_maker)
    return get_catalog_reader()


def run_with_session(work: Callable[[async_sessionmaker[AsyncSession]], Awaitable[Any]]) -> Any:
    """Run `work` on a fresh engine inside a new event loop."""
    settings = get_settings()

    async def runner():
        engine = create_engine_for(settings.database_url)
        try:
            session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await work(session_maker)
        finally:
            await engine.dispose()

    return asyncio.run(runner())


# =============================================================================
# ASYNC BODIES
# =============================================================================

async def build_snapshot_export(
    session_maker: async_sessionmaker[AsyncSession],
    snapshot_id: str,
) -> dict:
    async with session_maker() as session:
        store = SnapshotStore(session)
        exporter = ComplianceExporter(store, IntegrityVerifier(store))
        document = await exporter.export_for_compliance(snapshot_id)
        return document.to_dict()


async def run_sweep(session_maker: async_sessionmaker[AsyncSession], limit: int) -> list[dict]:
    async with session_maker() as session:
        verifier = IntegrityVerifier(SnapshotStore(session))
        results = await verifier.sweep(limit)
        return [{"snapshot_id": r.snapshot_id, **r.to_dict()} for r in results]


async def build_price_history_export(
    session_maker: async_sessionmaker[AsyncSession],
    organization_id: str,
    start: datetime,
    end: datetime,
) -> dict:
    settings = get_settings()
    async with session_maker() as session:
        ledger = PriceLedger(session, max_history_limit=settings.price_history_max_limit)
        store = SnapshotStore(session)
        exporter = ComplianceExporter(
            store,
            IntegrityVerifier(store),
            ledger=ledger,
            catalog=_catalog_for(session_maker),
        )
        export = await exporter.export_price_history(organization_id, start, end)
        return export.to_dict()


# =============================================================================
# CELERY TASKS
# =============================================================================

@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    retry_backoff=True
)
def export_snapshot_to_excel(self, snapshot_id: str) -> dict:
    """
    Verify a snapshot and write its compliance workbook.

    Args:
        snapshot_id: Id of the stored snapshot

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: Exporting snapshot {snapshot_id}")
    start_time = time.time()

    document = run_with_session(lambda sm: build_snapshot_export(sm, snapshot_id))
    result = ExcelManager().export_snapshot(document)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['integrity_failure'] = document['integrity_failure']
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"✅ Task {task_id}: Snapshot {snapshot_id} exported in {elapsed}s")
    else:
        logger.warning(f"⚠️ Task {task_id}: Snapshot {snapshot_id} failed - {result['message']}")
        # Lock timeouts and I/O errors are transient
        raise self.retry(exc=RuntimeError(result['message']))

    return result


@celery_app.task(bind=True)
def export_price_history_to_excel(self, organization_id: str, start: str, end: str) -> dict:
    """
    Write an organization's price history between two ISO-8601 instants.
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: Exporting price history of {organization_id}")

    export = run_with_session(
        lambda sm: build_price_history_export(
            sm,
            organization_id,
            datetime.fromisoformat(start),
            datetime.fromisoformat(end),
        )
    )
    result = ExcelManager().export_price_history(export)
    result['task_id'] = task_id
    return result


@celery_app.task
def reverify_recent_snapshots(limit: Optional[int] = None) -> dict:
    """
    Re-verify the most recent snapshots and append the results to the
    verification log. Scheduled by Celery beat.
    """
    batch = limit or get_settings().reverify_batch_size
    results = run_with_session(lambda sm: run_sweep(sm, batch))
    failures = [r['snapshot_id'] for r in results if not r['is_valid']]

    log_result = ExcelManager().append_verification_log(results)
    if failures:
        logger.error(f"❌ Integrity sweep: {len(failures)} snapshot(s) failed verification: {failures}")
    else:
        logger.info(f"✅ Integrity sweep: {len(results)} snapshot(s) verified")

    return {
        'checked': len(results),
        'failed': failures,
        'logged': log_result['success'],
        'timestamp': utc_now().isoformat(),
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': utc_now().isoformat()
    }
