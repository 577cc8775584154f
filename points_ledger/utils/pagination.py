"""Pagination utility functions."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

T = TypeVar("T")


@dataclass
class PaginationParams:
    """Offset/limit pagination parameters (bounded by the caller)."""

    limit: int = 50
    offset: int = 0


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result container."""

    items: list[T]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        """Whether rows exist beyond this page."""
        return self.offset + len(self.items) < self.total


async def paginate_query(
    db: AsyncSession,
    query: Select,
    params: PaginationParams,
) -> PaginatedResult[T]:
    """Apply pagination to a query and return results with total count.

    Args:
        db: Database session
        query: SQLAlchemy select query (ordering already applied)
        params: Pagination parameters

    Returns:
        PaginatedResult with the page of items and the unpaginated total
    """
    # Count total
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    count_result = await db.execute(count_query)
    total = count_result.scalar() or 0

    # Apply pagination
    paginated_query = query.offset(params.offset).limit(params.limit)
    result = await db.execute(paginated_query)
    items = list(result.scalars().all())

    return PaginatedResult(items=items, total=total, limit=params.limit, offset=params.offset)
