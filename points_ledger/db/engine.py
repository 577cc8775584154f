"""Points Ledger - Async database engine."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from points_ledger.core.config import get_settings


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Give SQLite real transactions.

    The sqlite3 driver starts transactions lazily and breaks SAVEPOINT. Turn
    that off and open every transaction with BEGIN IMMEDIATE so that writers
    are serialized by the database lock rather than failing on upgrade.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``.

    MySQL gets a pre-pinged connection pool; SQLite (dev/tests) gets the
    transactional setup from ``_configure_sqlite``.
    """
    options: dict[str, Any] = {"echo": echo}
    is_sqlite = url.startswith("sqlite")
    if not is_sqlite:
        # Note: pool_pre_ping helps detect stale connections
        options.update(pool_pre_ping=True, pool_size=10, max_overflow=20)

    new_engine = create_async_engine(url, **options)
    if is_sqlite:
        _configure_sqlite(new_engine)
    return new_engine


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``bind``."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine_from_url(get_settings().database_url, echo=get_settings().debug)

# Async session factory
async_session_factory = create_session_factory(engine)


async def init_db() -> None:
    """Initialize database - create all tables.

    Production schemas are managed by Alembic; this is for local runs.
    """
    import points_ledger.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Usage:
        async with get_session() as session:
            service = LedgerService(session)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    The ledger services commit their own units of work; anything left
    pending when the request ends is rolled back on error.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
