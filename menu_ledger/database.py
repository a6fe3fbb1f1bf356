"""
Database Connection Module

Handles the async SQLAlchemy engine, session factory and the storage-level
append-only enforcement for ledger tables.

Append-only tables are protected twice:
    - Database triggers reject every UPDATE and DELETE, whoever issues it
      (application, SQL console, migration script).
    - A before_flush hook refuses to emit UPDATE/DELETE for append-only ORM
      instances, so the application fails before reaching the database.
"""

import logging
import re
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator, Optional

from sqlalchemy import DDL, Table, event
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session

from menu_ledger.core.config import get_settings, get_security_logger
from menu_ledger.core.exceptions import ImmutabilityViolation

logger = logging.getLogger(__name__)
security_logger = get_security_logger()

APPEND_ONLY_MARKER = "append-only table"
_MARKER_PATTERN = re.compile(r"append-only table (\w+): (\w+) rejected")


# Base class for all our models
class Base(DeclarativeBase):
    pass


class AppendOnlyMixin:
    """Marks a mapped class whose rows may be inserted but never changed."""

    __append_only__ = True


# =============================================================================
# ENGINE & SESSIONS
# =============================================================================

def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite (aiosqlite) is used for local runs and tests and does not accept
    queue pool sizing arguments.
    """
    kwargs: dict = {"echo": echo}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=5,  # Connection pool size
            max_overflow=10,  # Extra connections when pool is full
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


@lru_cache()
def get_engine() -> AsyncEngine:
    """Get the process-wide engine built from settings."""
    settings = get_settings()
    return create_engine_for(settings.database_url, echo=settings.database_echo)


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory - creates new database sessions."""
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with get_session_maker()() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables (and their append-only triggers) in the database.
    Called once at application startup.
    """
    # Models must be imported so their tables are registered on the metadata
    from menu_ledger import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")


# =============================================================================
# STORAGE-LEVEL APPEND-ONLY TRIGGERS
# =============================================================================

_PG_REJECT_FUNCTION = DDL(
    """
    CREATE OR REPLACE FUNCTION reject_append_only_mutation()
    RETURNS TRIGGER AS $$
    BEGIN
        RAISE EXCEPTION USING
            MESSAGE = 'append-only table ' || TG_TABLE_NAME || ': ' || TG_OP || ' rejected',
            ERRCODE = '23000';
    END;
    $$ LANGUAGE plpgsql
    """
).execute_if(dialect="postgresql")


def register_append_only(table: Table) -> None:
    """
    Attach triggers that unconditionally reject UPDATE and DELETE on `table`.

    The triggers are created right after the table itself, so every database
    built from this metadata carries them.
    """
    name = table.name

    event.listen(table, "before_create", _PG_REJECT_FUNCTION)
    event.listen(
        table,
        "after_create",
        DDL(
            f"CREATE TRIGGER {name}_append_only "
            f"BEFORE UPDATE OR DELETE ON {name} "
            f"FOR EACH ROW EXECUTE FUNCTION reject_append_only_mutation()"
        ).execute_if(dialect="postgresql"),
    )
    event.listen(
        table,
        "after_create",
        DDL(
            f"CREATE TRIGGER {name}_no_truncate "
            f"BEFORE TRUNCATE ON {name} "
            f"FOR EACH STATEMENT EXECUTE FUNCTION reject_append_only_mutation()"
        ).execute_if(dialect="postgresql"),
    )

    for operation in ("UPDATE", "DELETE"):
        event.listen(
            table,
            "after_create",
            DDL(
                f"CREATE TRIGGER {name}_no_{operation.lower()} "
                f"BEFORE {operation} ON {name} "
                f"BEGIN SELECT RAISE(ABORT, "
                f"'append-only table {name}: {operation} rejected'); END"
            ).execute_if(dialect="sqlite"),
        )


def _report_violation(violation: ImmutabilityViolation) -> None:
    security_logger.critical(
        f"SECURITY: {violation.operation.upper()} attempted on append-only "
        f"table '{violation.table}'"
    )


@asynccontextmanager
async def translate_storage_errors() -> AsyncIterator[None]:
    """
    Convert trigger rejections raised by the database into ImmutabilityViolation.

    Any other database error propagates unchanged.
    """
    try:
        yield
    except DBAPIError as exc:
        message = str(exc.orig) if exc.orig is not None else str(exc)
        if APPEND_ONLY_MARKER not in message:
            raise
        match = _MARKER_PATTERN.search(message)
        table, operation = match.groups() if match else ("unknown", "modify")
        violation = ImmutabilityViolation(table, operation, detail=message)
        _report_violation(violation)
        raise violation from exc


# =============================================================================
# ORM-LEVEL GUARD
# =============================================================================

@event.listens_for(Session, "before_flush")
def _reject_append_only_changes(session: Session, flush_context, instances) -> None:
    """Refuse to flush modifications or deletions of append-only rows."""
    for obj in session.deleted:
        if getattr(obj, "__append_only__", False):
            violation = ImmutabilityViolation(obj.__tablename__, "delete")
            _report_violation(violation)
            raise violation

    for obj in session.dirty:
        if getattr(obj, "__append_only__", False) and session.is_modified(obj):
            violation = ImmutabilityViolation(obj.__tablename__, "update")
            _report_violation(violation)
            raise violation
