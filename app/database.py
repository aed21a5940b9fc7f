"""
Travel Booking Backend — Database Session Management
======================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
How:   Creates an async engine with connection pooling, provides a session
       dependency that auto-commits on success and auto-rolls-back on error.
Who:   Used by route handlers via FastAPI's dependency injection system.
When:  Engine is created at module import; sessions are created per-request.

Connection Pooling Strategy:
    pool_size=20:     Persistent connections for normal load
    max_overflow=10:  Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:    Validates connections before use
    pool_recycle=3600: Recycles connections every hour

    SQLite (tests, local runs) gets no pool arguments; its pool classes
    do not accept them.
"""

import logging
from typing import Any, AsyncGenerator, Dict

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

logger = logging.getLogger(__name__)


# Connection-level failures. Anything else from the driver is a real error.
STORAGE_ERRORS = (OperationalError, InterfaceError, DisconnectionError)


def _engine_options() -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine: AsyncEngine = create_async_engine(settings.database_url, **_engine_options())

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: booking rows are read again after the commit
# inside BookingService.create_booking
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models register with this metadata; Alembic reads it for
    migrations and the test suite uses it for create_all().
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back the transaction
        5. Always: closes the session (returns connection to pool)

    BookingService.create_booking commits on its own inside the
    per-destination critical section; the commit here is then a no-op.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_all(bind: AsyncEngine = engine) -> None:
    """
    What:  Creates every mapped table that does not exist yet.
    When:  Lifespan startup for SQLite deployments and the test suite.
           PostgreSQL schemas are managed by Alembic instead.
    """
    # Model modules must be imported so their tables register on Base
    from app.models import booking, destination, user  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    await engine.dispose()


async def rollback_quietly(session: AsyncSession) -> None:
    """
    What:  Resets a session whose connection just failed.
    When:  Before raising StorageUnavailableError from a read, so a retry
           can reuse the session instead of hitting PendingRollbackError.
    """
    try:
        await session.rollback()
    except STORAGE_ERRORS as e:
        logger.debug("Rollback after connection loss also failed: %s", e)
