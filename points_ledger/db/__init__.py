"""Database module - async engine, session management, error translation."""

from points_ledger.db.engine import (
    async_session_factory,
    close_db,
    create_engine_from_url,
    create_session_factory,
    engine,
    get_db,
    get_session,
    init_db,
)
from points_ledger.db.errors import is_conflict, translate_db_error

__all__ = [
    "engine",
    "async_session_factory",
    "create_engine_from_url",
    "create_session_factory",
    "init_db",
    "close_db",
    "get_session",
    "get_db",
    "is_conflict",
    "translate_db_error",
]
