"""Points Ledger utility functions.

Common helper functions and utilities used across the application.
"""

from points_ledger.utils.helpers import format_utc_datetime, to_naive_utc, utcnow
from points_ledger.utils.pagination import PaginatedResult, PaginationParams, paginate_query

__all__ = [
    "PaginatedResult",
    "PaginationParams",
    "format_utc_datetime",
    "paginate_query",
    "to_naive_utc",
    "utcnow",
]
