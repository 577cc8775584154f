"""Ledger Service - the public contract for points.

Composes the balance store and the transaction log into single units of
work. This is the only component allowed to mutate balances or append
transactions; every other subsystem goes through it.

Units of work:
- spend: conditional debit + log append. The debit is authoritative; if the
  append fails after it, the spend still succeeds and the entry is parked in
  the backfill queue.
- earn: credit + log append, both-or-neither.

Lost lock races (ConflictError) are retried here with bounded exponential
backoff and never reach the caller.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar
from uuid import uuid4

import redis.asyncio as redis
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from points_ledger.core.config import Settings, get_settings
from points_ledger.core.exceptions import (
    ConflictError,
    DuplicateTransactionError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from points_ledger.db.errors import translate_db_error
from points_ledger.models.ledger import CREDIT_TYPES, CreditTransaction, TransactionType
from points_ledger.models.reward import ReferralReward
from points_ledger.services.backfill_queue import BackfillQueue
from points_ledger.services.balance_store import BalanceStore, validate_amount, validate_user_id
from points_ledger.services.pricing_service import ActionType, describe_action, get_action_cost
from points_ledger.services.transaction_log import (
    TransactionEntry,
    TransactionFilters,
    TransactionLog,
    TransactionSummary,
)
from points_ledger.utils.pagination import PaginatedResult, PaginationParams

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TransactionRefs:
    """What a transaction paid for, when known."""

    lead_id: str | None = None
    message_id: str | None = None
    campaign_id: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {
            "lead_id": self.lead_id,
            "message_id": self.message_id,
            "campaign_id": self.campaign_id,
        }


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a balance mutation.

    Attributes:
        balance: Balance right after the mutation
        transaction_id: Id of the recorded (or pending) transaction
        replayed: True when an earlier call with the same key was returned
        logged: False while the transaction waits in the backfill queue
    """

    balance: int
    transaction_id: str
    replayed: bool = False
    logged: bool = True


@dataclass(frozen=True)
class ReconciliationReport:
    """Balance vs. signed transaction sum for one user."""

    user_id: str
    balance: int
    ledger_sum: int
    pending_backfill: int

    @property
    def drift(self) -> int:
        return self.balance - self.ledger_sum

    @property
    def is_consistent(self) -> bool:
        """Drift is fully explained by transactions still awaiting backfill."""
        return self.drift == self.pending_backfill


def _same_operation(record: CreditTransaction, entry: TransactionEntry) -> bool:
    return (
        record.user_id == entry.user_id
        and record.action_type == entry.action_type
        and record.amount == entry.amount
    )


def _validate_key(idempotency_key: object) -> str:
    if not isinstance(idempotency_key, str) or not idempotency_key.strip():
        raise ValidationError("Idempotency key is required")
    if len(idempotency_key) > 128:
        raise ValidationError("Idempotency key is too long (max 128)")
    return idempotency_key


class LedgerService:
    """Spend, earn and query points for a user."""

    def __init__(
        self,
        db: AsyncSession,
        backfill: BackfillQueue | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.balances = BalanceStore(db)
        self.log = TransactionLog(db)
        self.backfill = backfill
        self.settings = settings or get_settings()

    # =========================================================================
    # Units of work
    # =========================================================================

    async def run_in_transaction(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` and commit, retrying the whole unit on conflicts.

        ``operation`` must be safe to re-run from scratch: every attempt
        starts after a rollback.

        Raises:
            InternalError: Storage failure, or conflicts outlasted the retry budget
            LedgerError: Whatever ``operation`` raised (after rollback)
        """
        max_attempts = self.settings.conflict_max_retries
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
                await self._commit()
                return result
            except ConflictError:
                await self.db.rollback()
                if attempt >= max_attempts:
                    logger.error("Giving up after %d conflicting attempts", attempt)
                    raise InternalError(
                        "Ledger is busy, retry with the same idempotency key",
                        {"attempts": attempt},
                    ) from None
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    "Concurrent update on attempt %d/%d, retrying in %.3fs",
                    attempt,
                    max_attempts,
                    delay,
                )
                await asyncio.sleep(delay)
            except Exception:
                await self.db.rollback()
                raise

    def _backoff_seconds(self, attempt: int) -> float:
        base = self.settings.conflict_backoff_base_ms / 1000
        return base * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            raise translate_db_error(e, "commit") from e

    async def _finish_read(self) -> None:
        """End a read-only transaction so it does not hold locks."""
        await self._commit()

    # =========================================================================
    # Spend
    # =========================================================================

    async def spend(
        self,
        user_id: str,
        amount: int,
        description: str,
        idempotency_key: str,
        refs: TransactionRefs | None = None,
    ) -> LedgerResult:
        """Debit ``amount`` points before a paid action.

        The idempotency key must be generated and persisted by the caller
        before the first attempt. A repeated call with the same key returns
        the first call's result without debiting again.

        Raises:
            ValidationError: Bad amount, user id or key
            NotFoundError: Unknown user
            InsufficientBalanceError: Balance does not cover ``amount``
            IdempotencyConflictError: Key already used for a different operation
            InternalError: Storage unavailable (safe to retry with the same key)
        """
        validate_user_id(user_id)
        validate_amount(amount)
        key = _validate_key(idempotency_key)
        refs = refs or TransactionRefs()

        replay = await self._replay(key, user_id, TransactionType.SPEND, -amount)
        if replay is not None:
            return replay

        unlogged: list[TransactionEntry] = []

        async def unit() -> LedgerResult:
            unlogged.clear()
            debit = await self.balances.try_debit(user_id, amount)
            if not debit.ok:
                raise InsufficientBalanceError(required=amount, available=debit.new_balance)

            entry = TransactionEntry(
                id=key,
                user_id=user_id,
                action_type=TransactionType.SPEND,
                amount=-amount,
                balance_after=debit.new_balance,
                description=description or "Points spent",
                **refs.as_dict(),
            )
            logged = await self._append_after_debit(entry)
            if not logged:
                unlogged.append(entry)
            return LedgerResult(balance=entry.balance_after, transaction_id=key, logged=logged)

        try:
            result = await self.run_in_transaction(unit)
        except DuplicateTransactionError:
            # A concurrent call with the same key committed first; ours rolled back
            replay = await self._replay(key, user_id, TransactionType.SPEND, -amount)
            if replay is None:
                raise InternalError("Concurrent spend outcome unavailable, retry") from None
            return replay
        except InsufficientBalanceError as e:
            logger.info(
                "Spend refused: user=%s required=%d available=%s",
                user_id,
                amount,
                e.details.get("available"),
            )
            raise

        for entry in unlogged:
            await self._queue_backfill(entry)

        logger.info(
            "Points spent: user=%s amount=%d balance=%d key=%s",
            user_id,
            amount,
            result.balance,
            key,
        )
        return result

    async def spend_for_action(
        self,
        user_id: str,
        action: ActionType,
        idempotency_key: str,
        count: int = 1,
        refs: TransactionRefs | None = None,
    ) -> LedgerResult:
        """Spend the priced cost of ``count`` x ``action``."""
        cost = get_action_cost(action, count)
        return await self.spend(
            user_id, cost, describe_action(action, count), idempotency_key, refs
        )

    async def _append_after_debit(self, entry: TransactionEntry) -> bool:
        """Append a spend entry; False if the log write failed.

        A failed write leaves the debit in place. A duplicate id means another
        request owns this key, so the whole unit must roll back.
        """
        try:
            _, created = await self.log.append(entry)
        except InternalError:
            logger.exception(
                "Transaction log append failed after debit: user=%s key=%s",
                entry.user_id,
                entry.id,
            )
            return False
        if not created:
            raise DuplicateTransactionError(entry.id)
        return True

    async def _queue_backfill(self, entry: TransactionEntry) -> None:
        if self.backfill is None:
            logger.error(
                "No backfill queue configured; transaction %s is unlogged: %s",
                entry.id,
                entry.model_dump_json(),
            )
            return
        try:
            await self.backfill.push(entry)
        except redis.RedisError:
            logger.exception(
                "Could not queue transaction %s for backfill: %s",
                entry.id,
                entry.model_dump_json(),
            )

    async def drain_backfill(self) -> dict[str, int]:
        """Write queued entries into the transaction log, oldest first.

        Appends are idempotent on id, so an entry that was written but not
        yet removed from the queue is simply dropped on the next pass. An id
        held by a row for a different user, type or amount is not this
        entry: it stays queued and is reported as conflicting.

        Returns:
            Counts of written, already present, conflicting and failed entries
        """
        if self.backfill is None:
            raise InternalError("No backfill queue configured")

        stats = {"written": 0, "already_logged": 0, "conflicting": 0, "failed": 0}
        for entry in await self.backfill.pending():
            try:
                record, created = await self.log.append(entry)
                await self._commit()
            except (ConflictError, InternalError):
                await self.db.rollback()
                stats["failed"] += 1
                logger.exception("Backfill of transaction %s failed, keeping it queued", entry.id)
                continue

            if not created and not _same_operation(record, entry):
                stats["conflicting"] += 1
                logger.error(
                    "Backfill of transaction %s blocked by a different logged operation: "
                    "queued=%s logged_user=%s logged_type=%s logged_amount=%d",
                    entry.id,
                    entry.model_dump_json(),
                    record.user_id,
                    record.action_type.value,
                    record.amount,
                )
                continue

            await self.backfill.remove(entry.id)
            stats["written" if created else "already_logged"] += 1

        if stats["written"] or stats["conflicting"] or stats["failed"]:
            logger.info("Backfill pass: %s", stats)
        return stats

    # =========================================================================
    # Earn
    # =========================================================================

    async def earn(
        self,
        user_id: str,
        amount: int,
        description: str,
        source_type: TransactionType = TransactionType.EARN,
        refs: TransactionRefs | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerResult:
        """Credit ``amount`` points. Balance and log change together or not at all.

        Raises:
            ValidationError: Bad amount/user, spend used as source, or overflow
            NotFoundError: Unknown user
            IdempotencyConflictError: Key already used for a different operation
            InternalError: Storage unavailable
        """
        validate_user_id(user_id)
        validate_amount(amount)
        if source_type not in CREDIT_TYPES:
            raise ValidationError(
                f"{source_type.value} is not a credit type", {"source_type": source_type.value}
            )

        if idempotency_key is not None:
            key = _validate_key(idempotency_key)
            replay = await self._replay(key, user_id, source_type, amount)
            if replay is not None:
                return replay
        else:
            key = str(uuid4())

        async def unit() -> LedgerResult:
            return await self.apply_credit(user_id, amount, description, source_type, key, refs)

        try:
            result = await self.run_in_transaction(unit)
        except DuplicateTransactionError:
            replay = await self._replay(key, user_id, source_type, amount)
            if replay is None:
                raise InternalError("Concurrent earn outcome unavailable, retry") from None
            return replay

        logger.info(
            "Points earned: user=%s amount=%d type=%s balance=%d",
            user_id,
            amount,
            source_type.value,
            result.balance,
        )
        return result

    async def apply_credit(
        self,
        user_id: str,
        amount: int,
        description: str,
        source_type: TransactionType,
        transaction_id: str,
        refs: TransactionRefs | None = None,
    ) -> LedgerResult:
        """Credit + append inside the caller's unit of work. Does not commit.

        For composing an earn with other writes (reward grants, account
        opening) via ``run_in_transaction``.
        """
        refs = refs or TransactionRefs()
        new_balance = await self.balances.credit(user_id, amount)
        entry = TransactionEntry(
            id=transaction_id,
            user_id=user_id,
            action_type=source_type,
            amount=amount,
            balance_after=new_balance,
            description=description or "Points earned",
            **refs.as_dict(),
        )
        _, created = await self.log.append(entry)
        if not created:
            raise DuplicateTransactionError(transaction_id)
        return LedgerResult(balance=new_balance, transaction_id=transaction_id)

    # =========================================================================
    # Idempotent replay
    # =========================================================================

    async def _replay(
        self,
        key: str,
        user_id: str,
        action_type: TransactionType,
        amount: int,
    ) -> LedgerResult | None:
        """Result of an earlier call with ``key``, if there was one."""
        record = await self.log.get(key)
        if record is not None:
            entry = TransactionEntry.model_validate(record, from_attributes=True)
        else:
            entry = await self._pending_entry(key)
        await self._finish_read()

        if entry is None:
            return None

        if entry.user_id != user_id or entry.action_type != action_type or entry.amount != amount:
            raise IdempotencyConflictError(
                "Idempotency key was already used for a different operation",
                {"idempotency_key": key},
            )

        logger.info(
            "Idempotent replay: user=%s key=%s balance=%d", user_id, key, entry.balance_after
        )
        return LedgerResult(
            balance=entry.balance_after,
            transaction_id=entry.id,
            replayed=True,
            logged=record is not None,
        )

    async def _pending_entry(self, key: str) -> TransactionEntry | None:
        if self.backfill is None:
            return None
        try:
            return await self.backfill.get(key)
        except redis.RedisError:
            logger.warning("Backfill queue unreachable during replay check for %s", key)
            return None

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_balance(self, user_id: str) -> int:
        """Snapshot read of the current balance; may trail an in-flight debit.

        Raises:
            NotFoundError: Unknown user
        """
        validate_user_id(user_id)
        try:
            return await self.balances.get_credits(user_id)
        finally:
            await self._finish_read()

    async def can_afford(self, user_id: str, amount: int) -> bool:
        """Informational check only. The gated action must still call ``spend``."""
        validate_amount(amount)
        return await self.get_balance(user_id) >= amount

    async def list_transactions(
        self,
        user_id: str,
        filters: TransactionFilters | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResult[CreditTransaction]:
        """List transactions newest first, limit clamped to the configured max."""
        validate_user_id(user_id)
        pagination = pagination or PaginationParams(limit=self.settings.transactions_default_limit)
        if pagination.limit < 1 or pagination.offset < 0:
            raise ValidationError(
                "limit must be >= 1 and offset >= 0",
                {"limit": pagination.limit, "offset": pagination.offset},
            )
        if (
            filters
            and filters.start_date
            and filters.end_date
            and filters.start_date > filters.end_date
        ):
            raise ValidationError("from must not be after to")

        pagination = PaginationParams(
            limit=min(pagination.limit, self.settings.transactions_max_limit),
            offset=pagination.offset,
        )
        try:
            return await self.log.list(user_id, filters, pagination)
        finally:
            await self._finish_read()

    async def summarize(self, user_id: str) -> TransactionSummary:
        validate_user_id(user_id)
        try:
            return await self.log.summarize(user_id)
        finally:
            await self._finish_read()

    async def reconcile(self, user_id: str) -> ReconciliationReport:
        """Compare the authoritative balance with the signed transaction sum."""
        validate_user_id(user_id)
        try:
            balance = await self.balances.get_credits(user_id)
            ledger_sum = await self.log.signed_sum(user_id)
        finally:
            await self._finish_read()

        pending = 0
        if self.backfill is not None:
            try:
                pending = sum(e.amount for e in await self.backfill.pending_for_user(user_id))
            except redis.RedisError:
                logger.warning("Backfill queue unreachable during reconcile for %s", user_id)

        report = ReconciliationReport(
            user_id=user_id, balance=balance, ledger_sum=ledger_sum, pending_backfill=pending
        )
        if not report.is_consistent:
            logger.error(
                "Ledger drift for user=%s: balance=%d ledger_sum=%d pending=%d",
                user_id,
                balance,
                ledger_sum,
                pending,
            )
        return report

    # =========================================================================
    # Account lifecycle
    # =========================================================================

    async def open_account(self, user_id: str) -> int:
        """Create the balance row (plus the signup grant, if configured).

        Idempotent: an existing account is left untouched.

        Returns:
            Current balance
        """
        validate_user_id(user_id)
        grant = self.settings.signup_grant_credits

        async def unit() -> bool:
            created = await self.balances.create(user_id)
            if created and grant > 0:
                await self.apply_credit(
                    user_id, grant, "Signup bonus", TransactionType.EARN, f"signup:{user_id}"
                )
            return created

        created = await self.run_in_transaction(unit)
        if created:
            logger.info("Points account opened: user=%s grant=%d", user_id, grant)
        return await self.get_balance(user_id)

    async def close_account(self, user_id: str) -> None:
        """Account deletion cascade: balance, transactions and rewards.

        Raises:
            NotFoundError: Unknown user
        """
        validate_user_id(user_id)

        async def unit() -> int:
            if not await self.balances.exists(user_id):
                raise NotFoundError(f"No points account for user {user_id}", {"user_id": user_id})
            removed = await self.log.delete_for_user(user_id)
            try:
                await self.db.execute(
                    delete(ReferralReward).where(ReferralReward.user_id == user_id)
                )
            except SQLAlchemyError as e:
                raise translate_db_error(e, "reward delete") from e
            await self.balances.delete(user_id)
            return removed

        removed = await self.run_in_transaction(unit)

        if self.backfill is not None:
            try:
                for entry in await self.backfill.pending_for_user(user_id):
                    await self.backfill.remove(entry.id)
            except redis.RedisError:
                logger.warning("Could not purge backfill entries for deleted user %s", user_id)

        logger.info("Points account closed: user=%s transactions_removed=%d", user_id, removed)
