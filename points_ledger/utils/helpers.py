"""Time and formatting helpers."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (storage convention)."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Normalize an incoming datetime to naive UTC for comparisons in SQL.

    Query strings such as ``2024-01-01T00:00:00Z`` parse to aware datetimes,
    while rows are stored naive.
    """
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def format_utc_datetime(dt: datetime | None) -> str | None:
    """Format datetime to ISO string with Z suffix for UTC.

    Storage holds naive UTC, and ``isoformat()`` omits the offset; the Z
    suffix lets clients parse it as UTC.

    Args:
        dt: datetime object (assumed UTC) or None

    Returns:
        ISO format string with Z suffix (e.g., "2026-01-10T10:30:00Z") or None
    """
    if dt is None:
        return None
    return f"{to_naive_utc(dt).isoformat()}Z"
