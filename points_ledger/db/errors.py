"""Storage error classification.

SQLAlchemy surfaces lock contention and real outages through the same
exception types. The ledger needs to tell them apart: contention is a lost
race that is retried, anything else fails closed.
"""

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from points_ledger.core.exceptions import ConflictError, InternalError, LedgerError

# MySQL: 1205 lock wait timeout, 1213 deadlock
_MYSQL_CONFLICT_CODES = {1205, 1213}
# PostgreSQL: serialization_failure, deadlock_detected
_PG_CONFLICT_CODES = {"40001", "40P01"}
_SQLITE_CONFLICT_MESSAGES = ("database is locked", "database table is locked")

# MySQL 1062, PostgreSQL unique_violation, SQLite unique/primary key failure
_MYSQL_DUPLICATE_CODE = 1062
_PG_DUPLICATE_CODE = "23505"
_SQLITE_DUPLICATE_MESSAGE = "unique constraint failed"


def is_conflict(exc: SQLAlchemyError) -> bool:
    """Whether ``exc`` reports lost lock contention rather than an outage."""
    if not isinstance(exc, DBAPIError) or exc.orig is None:
        return False
    orig = exc.orig

    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _PG_CONFLICT_CODES:
        return True

    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int) and args[0] in _MYSQL_CONFLICT_CODES:
        return True

    message = str(orig).lower()
    return any(marker in message for marker in _SQLITE_CONFLICT_MESSAGES)


def is_duplicate_key(exc: SQLAlchemyError) -> bool:
    """Whether ``exc`` is a unique or primary key violation.

    Other integrity failures (CHECK constraints, triggers) are not.
    """
    if not isinstance(exc, DBAPIError) or exc.orig is None:
        return False
    orig = exc.orig

    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode == _PG_DUPLICATE_CODE:
        return True

    args = getattr(orig, "args", ())
    if args and args[0] == _MYSQL_DUPLICATE_CODE:
        return True

    return _SQLITE_DUPLICATE_MESSAGE in str(orig).lower()


def translate_db_error(exc: SQLAlchemyError, operation: str) -> LedgerError:
    """Map a storage exception to ``ConflictError`` or ``InternalError``."""
    if is_conflict(exc):
        return ConflictError(f"{operation}: concurrent update detected")
    return InternalError(f"{operation}: storage unavailable", {"operation": operation})
