"""Transaction Log - append-only record of balance mutations."""

import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from points_ledger.core.exceptions import ConflictError, InternalError
from points_ledger.db.errors import is_duplicate_key, translate_db_error
from points_ledger.models.ledger import CreditTransaction, TransactionType
from points_ledger.utils.helpers import to_naive_utc, utcnow
from points_ledger.utils.pagination import PaginatedResult, PaginationParams, paginate_query

logger = logging.getLogger(__name__)


class TransactionEntry(BaseModel):
    """A transaction about to be appended.

    Also the payload stored in the pending-backfill queue, so it carries its
    own ``created_at``: a backfilled row keeps the time of the mutation, not
    the time of the backfill.
    """

    id: str = Field(min_length=1, max_length=128)
    user_id: str
    action_type: TransactionType
    amount: int
    balance_after: int
    description: str = ""
    lead_id: str | None = None
    message_id: str | None = None
    campaign_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_record(self) -> CreditTransaction:
        return CreditTransaction(**self.model_dump())


@dataclass
class TransactionFilters:
    """Filters for listing transactions."""

    action_type: TransactionType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass
class TransactionSummary:
    """Per-type aggregates. Reporting only; the balance store is authoritative."""

    total_spent: int = 0
    total_earned: int = 0
    total_purchased: int = 0
    total_refunded: int = 0
    net: int = 0


class TransactionLog:
    """Append, list and summarize ``credit_transactions``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, transaction_id: str) -> CreditTransaction | None:
        try:
            return await self.db.get(CreditTransaction, transaction_id)
        except SQLAlchemyError as e:
            raise translate_db_error(e, "transaction read") from e

    async def append(self, entry: TransactionEntry) -> tuple[CreditTransaction, bool]:
        """Append ``entry`` unless a transaction with its id already exists.

        The insert runs in a SAVEPOINT so a failure here leaves any balance
        mutation made earlier in the same transaction intact; the caller
        decides whether that mutation stands.

        Returns:
            Tuple of (record, created). ``created`` is False when the id was
            already recorded and the existing row is returned instead.

        Raises:
            ConflictError: Lost a lock race, or the id was taken by a row this
                transaction cannot see yet
            InternalError: Storage failure while writing
        """
        existing = await self.get(entry.id)
        if existing is not None:
            return existing, False

        record = entry.to_record()
        try:
            async with self.db.begin_nested():
                self.db.add(record)
                await self.db.flush()
        except IntegrityError as e:
            # Inserted concurrently after our lookup
            existing = await self.get(entry.id)
            if existing is not None:
                return existing, False
            if is_duplicate_key(e):
                # Committed by another transaction outside our snapshot
                raise ConflictError(f"Transaction {entry.id} recorded concurrently") from e
            raise InternalError(
                f"Transaction {entry.id} rejected by storage", {"transaction_id": entry.id}
            ) from e
        except SQLAlchemyError as e:
            raise translate_db_error(e, "transaction append") from e

        return record, True

    async def list(
        self,
        user_id: str,
        filters: TransactionFilters | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResult[CreditTransaction]:
        """List a user's transactions, newest first."""
        filters = filters or TransactionFilters()
        pagination = pagination or PaginationParams()

        query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        if filters.action_type:
            query = query.where(CreditTransaction.action_type == filters.action_type)
        if filters.start_date:
            query = query.where(CreditTransaction.created_at >= to_naive_utc(filters.start_date))
        if filters.end_date:
            query = query.where(CreditTransaction.created_at <= to_naive_utc(filters.end_date))

        query = query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())

        try:
            return await paginate_query(self.db, query, pagination)
        except SQLAlchemyError as e:
            raise translate_db_error(e, "transaction list") from e

    async def summarize(self, user_id: str) -> TransactionSummary:
        """Aggregate signed amounts by action type."""
        query = (
            select(CreditTransaction.action_type, func.sum(CreditTransaction.amount))
            .where(CreditTransaction.user_id == user_id)
            .group_by(CreditTransaction.action_type)
        )
        try:
            rows = (await self.db.execute(query)).all()
        except SQLAlchemyError as e:
            raise translate_db_error(e, "transaction summary") from e

        summary = TransactionSummary()
        for action_type, total in rows:
            total = int(total or 0)
            summary.net += total
            if action_type == TransactionType.SPEND:
                summary.total_spent += abs(total)
            elif action_type in (TransactionType.EARN, TransactionType.REFERRAL_REWARD):
                summary.total_earned += total
            elif action_type in (TransactionType.PURCHASE, TransactionType.SUBSCRIPTION):
                summary.total_purchased += total
            elif action_type == TransactionType.REFUND:
                summary.total_refunded += total
        return summary

    async def signed_sum(self, user_id: str) -> int:
        """Sum of all signed amounts for ``user_id``."""
        try:
            result = await self.db.execute(
                select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                    CreditTransaction.user_id == user_id
                )
            )
        except SQLAlchemyError as e:
            raise translate_db_error(e, "transaction sum") from e
        return int(result.scalar() or 0)

    async def delete_for_user(self, user_id: str) -> int:
        """Delete a user's transactions (account deletion only)."""
        try:
            result = await self.db.execute(
                delete(CreditTransaction).where(CreditTransaction.user_id == user_id)
            )
        except SQLAlchemyError as e:
            raise translate_db_error(e, "transaction delete") from e
        return result.rowcount
