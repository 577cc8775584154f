"""Balance Store - authoritative per-user balances.

Every mutation is a single conditional UPDATE; the condition is evaluated by
the database against the current row, so two racing debits can never both
observe the same pre-image. The caller (LedgerService) owns the transaction:
nothing here commits.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from points_ledger.core.exceptions import NotFoundError, ValidationError
from points_ledger.db.errors import translate_db_error
from points_ledger.models.ledger import MAX_CREDITS, CreditBalance
from points_ledger.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebitResult:
    """Outcome of a conditional debit."""

    ok: bool
    new_balance: int


def validate_amount(amount: object) -> int:
    """Reject anything that is not a positive int64.

    Raises:
        ValidationError: Non-integral, non-positive or oversized amount
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be an integer", {"amount": repr(amount)})
    if amount <= 0:
        raise ValidationError("Amount must be positive", {"amount": amount})
    if amount > MAX_CREDITS:
        raise ValidationError("Amount exceeds the maximum balance", {"amount": amount})
    return amount


def validate_user_id(user_id: object) -> str:
    """Reject empty or oversized user ids."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("User id is required")
    if len(user_id) > 64:
        raise ValidationError("User id is too long", {"user_id": user_id[:64]})
    return user_id


class BalanceStore:
    """Conditional mutations on ``credit_balances``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _execute(self, stmt, operation: str):
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise translate_db_error(e, operation) from e

    async def get_credits(self, user_id: str) -> int:
        """Current balance.

        Raises:
            NotFoundError: No balance row for this user
        """
        result = await self._execute(
            select(CreditBalance.credits).where(CreditBalance.user_id == user_id),
            "balance read",
        )
        credits = result.scalar_one_or_none()
        if credits is None:
            raise NotFoundError(f"No points account for user {user_id}", {"user_id": user_id})
        return credits

    async def exists(self, user_id: str) -> bool:
        result = await self._execute(
            select(CreditBalance.user_id).where(CreditBalance.user_id == user_id),
            "balance read",
        )
        return result.scalar_one_or_none() is not None

    async def create(self, user_id: str, credits: int = 0) -> bool:
        """Insert the balance row for a new account.

        Returns:
            True if the row was created, False if it already existed
        """
        validate_user_id(user_id)
        if credits < 0:
            raise ValidationError("Opening balance cannot be negative", {"credits": credits})

        try:
            async with self.db.begin_nested():
                self.db.add(CreditBalance(user_id=user_id, credits=credits))
                await self.db.flush()
        except IntegrityError:
            logger.debug("Balance row already exists for user %s", user_id)
            return False
        except SQLAlchemyError as e:
            raise translate_db_error(e, "balance create") from e
        return True

    async def try_debit(self, user_id: str, amount: int) -> DebitResult:
        """Subtract ``amount`` only if the balance covers it.

        One conditional UPDATE decides; the follow-up read happens inside the
        same transaction, after the row was locked by the update, so it
        reports this debit's post-state (or the balance that refused it).

        Raises:
            ValidationError: Bad amount
            NotFoundError: Unknown user
            ConflictError: Lost a lock race; retry the whole unit
            InternalError: Storage unavailable
        """
        validate_amount(amount)
        stmt = (
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .where(CreditBalance.credits >= amount)
            .values(
                credits=CreditBalance.credits - amount,
                version=CreditBalance.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt, "balance debit")
        new_balance = await self.get_credits(user_id)
        return DebitResult(ok=result.rowcount == 1, new_balance=new_balance)

    async def credit(self, user_id: str, amount: int) -> int:
        """Add ``amount`` unconditionally (bounded by int64).

        Returns:
            The new balance

        Raises:
            ValidationError: Bad amount or the result would overflow
            NotFoundError: Unknown user
        """
        validate_amount(amount)
        stmt = (
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .where(CreditBalance.credits <= MAX_CREDITS - amount)
            .values(
                credits=CreditBalance.credits + amount,
                version=CreditBalance.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt, "balance credit")
        new_balance = await self.get_credits(user_id)
        if result.rowcount != 1:
            raise ValidationError(
                "Credit would overflow the balance",
                {"amount": amount, "balance": new_balance},
            )
        return new_balance

    async def delete(self, user_id: str) -> bool:
        """Remove the balance row (account deletion only)."""
        result = await self._execute(
            delete(CreditBalance).where(CreditBalance.user_id == user_id),
            "balance delete",
        )
        return result.rowcount > 0
