"""Ledger service: spend/earn units of work, idempotency, concurrency."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from sqlalchemy import text

from points_ledger.core.exceptions import (
    ConflictError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from points_ledger.models.ledger import TransactionType
from points_ledger.services.backfill_queue import BackfillQueue
from points_ledger.services.ledger_service import LedgerService, TransactionRefs
from points_ledger.services.pricing_service import ActionType
from points_ledger.services.transaction_log import TransactionEntry, TransactionFilters
from points_ledger.utils.helpers import utcnow
from points_ledger.utils.pagination import PaginationParams


async def run_sql(db, statement: str) -> None:
    await db.execute(text(statement))
    await db.commit()


class TestSpend:
    async def test_spend_debits_and_logs(self, ledger, funded_user):
        user = await funded_user(100)

        result = await ledger.spend(
            user, 30, "AI reply", "key-1", TransactionRefs(lead_id="lead-9")
        )

        assert result.balance == 70
        assert result.replayed is False
        assert result.logged is True
        assert await ledger.get_balance(user) == 70

        record = await ledger.log.get("key-1")
        assert record.amount == -30
        assert record.balance_after == 70
        assert record.action_type == TransactionType.SPEND
        assert record.lead_id == "lead-9"

    async def test_insufficient_balance_appends_nothing(self, ledger, funded_user):
        user = await funded_user(5)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.spend(user, 6, "Bulk send", "key-1")

        assert exc_info.value.details == {"required": 6, "available": 5}
        assert await ledger.get_balance(user) == 5
        assert await ledger.log.get("key-1") is None

    async def test_unknown_user(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.spend("ghost", 1, "x", "key-1")

    @pytest.mark.parametrize("amount", [0, -3, 2.5])
    async def test_invalid_amount(self, ledger, funded_user, amount):
        user = await funded_user(10)

        with pytest.raises(ValidationError):
            await ledger.spend(user, amount, "x", "key-1")
        assert await ledger.get_balance(user) == 10

    async def test_missing_idempotency_key(self, ledger, funded_user):
        user = await funded_user(10)

        with pytest.raises(ValidationError):
            await ledger.spend(user, 1, "x", "")

    async def test_spend_for_action_uses_price_table(self, ledger, funded_user):
        user = await funded_user(20)

        result = await ledger.spend_for_action(user, ActionType.AI_RESPONSE, "key-1", count=3)

        assert result.balance == 14
        record = await ledger.log.get("key-1")
        assert record.description == "AI response generated (3x)"

    async def test_can_afford(self, ledger, funded_user):
        user = await funded_user(10)

        assert await ledger.can_afford(user, 10) is True
        assert await ledger.can_afford(user, 11) is False


class TestIdempotentReplay:
    async def test_retried_spend_charges_once(self, ledger, funded_user):
        user = await funded_user(5)

        first = await ledger.spend(user, 3, "AI reply", "k1")
        retry = await ledger.spend(user, 3, "AI reply", "k1")

        assert first.balance == 2
        assert retry.balance == 2
        assert retry.replayed is True
        assert await ledger.get_balance(user) == 2

        page = await ledger.list_transactions(user, TransactionFilters(TransactionType.SPEND))
        assert page.total == 1

    async def test_replay_returns_original_post_state(self, ledger, funded_user):
        user = await funded_user(10)

        await ledger.spend(user, 3, "first", "k1")
        await ledger.spend(user, 2, "second", "k2")
        retry = await ledger.spend(user, 3, "first", "k1")

        assert retry.balance == 7
        assert await ledger.get_balance(user) == 5

    async def test_key_reused_for_different_amount(self, ledger, funded_user):
        user = await funded_user(10)
        await ledger.spend(user, 3, "AI reply", "k1")

        with pytest.raises(IdempotencyConflictError):
            await ledger.spend(user, 4, "AI reply", "k1")
        assert await ledger.get_balance(user) == 7

    async def test_key_reused_by_another_user(self, ledger, funded_user):
        alice = await funded_user(10, "alice")
        bob = await funded_user(10, "bob")
        await ledger.spend(alice, 3, "AI reply", "k1")

        with pytest.raises(IdempotencyConflictError):
            await ledger.spend(bob, 3, "AI reply", "k1")
        assert await ledger.get_balance(bob) == 10

    async def test_key_committed_outside_snapshot_by_another_user(
        self, ledger, make_ledger, funded_user, backfill, monkeypatch
    ):
        await funded_user(10, "alice")
        bob = await funded_user(10, "bob")
        await make_ledger().spend("alice", 3, "AI reply", "k1")

        # Bob's first three lookups run against a snapshot older than Alice's commit
        real_get = ledger.log.get
        stale_reads = 3

        async def snapshot_get(transaction_id):
            nonlocal stale_reads
            if stale_reads:
                stale_reads -= 1
                return None
            return await real_get(transaction_id)

        monkeypatch.setattr(ledger.log, "get", snapshot_get)

        with pytest.raises(IdempotencyConflictError):
            await ledger.spend(bob, 4, "AI reply", "k1")

        assert stale_reads == 0
        assert await ledger.get_balance(bob) == 10
        assert await backfill.pending() == []

    async def test_concurrent_retries_with_same_key(self, make_ledger, funded_user, ledger):
        user = await funded_user(10)

        results = await asyncio.gather(
            *(make_ledger().spend(user, 4, "AI reply", "same-key") for _ in range(3))
        )

        assert {r.balance for r in results} == {6}
        assert sum(1 for r in results if not r.replayed) == 1
        assert await ledger.get_balance(user) == 6


class TestConcurrency:
    async def test_two_spends_of_seven_on_ten(self, make_ledger, funded_user, ledger):
        user = await funded_user(10)

        results = await asyncio.gather(
            make_ledger().spend(user, 7, "first", "a"),
            make_ledger().spend(user, 7, "second", "b"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert successes[0].balance == 3
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientBalanceError)
        assert await ledger.get_balance(user) == 3

    async def test_burst_never_overspends(self, make_ledger, funded_user, ledger):
        user = await funded_user(5)

        results = await asyncio.gather(
            *(make_ledger().spend(user, 1, "burst", f"burst-{i}") for i in range(8)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert len(succeeded) == 5
        assert len(refused) == 3
        assert await ledger.get_balance(user) == 0

        report = await ledger.reconcile(user)
        assert report.drift == 0

    async def test_mixed_spend_and_earn(self, make_ledger, funded_user, ledger):
        user = await funded_user(10)

        await asyncio.gather(
            make_ledger().spend(user, 4, "spend", "s1"),
            make_ledger().earn(user, 6, "top-up"),
            make_ledger().spend(user, 5, "spend", "s2"),
        )

        assert await ledger.get_balance(user) == 7
        assert (await ledger.reconcile(user)).is_consistent


class TestConflictRetry:
    async def test_lost_race_is_retried(self, ledger, funded_user, monkeypatch):
        user = await funded_user(10)
        original = ledger.balances.try_debit
        calls = 0

        async def flaky(user_id, amount):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConflictError("balance debit: concurrent update detected")
            return await original(user_id, amount)

        monkeypatch.setattr(ledger.balances, "try_debit", flaky)

        result = await ledger.spend(user, 4, "AI reply", "k1")

        assert calls == 2
        assert result.balance == 6

    async def test_retries_are_bounded(self, ledger, funded_user, monkeypatch):
        user = await funded_user(10)
        monkeypatch.setattr(
            ledger.balances, "try_debit", AsyncMock(side_effect=ConflictError("busy"))
        )

        with pytest.raises(InternalError):
            await ledger.spend(user, 4, "AI reply", "k1")

        assert ledger.balances.try_debit.await_count == ledger.settings.conflict_max_retries

    async def test_storage_failure_fails_closed(self, db, ledger, funded_user):
        user = await funded_user(10)
        await run_sql(
            db,
            "CREATE TRIGGER fail_balance_writes BEFORE UPDATE ON credit_balances "
            "BEGIN SELECT RAISE(ABORT, 'disk I/O error'); END",
        )

        with pytest.raises(InternalError):
            await ledger.spend(user, 4, "AI reply", "k1")

        assert await ledger.get_balance(user) == 10
        assert await ledger.log.get("k1") is None


class TestLogAppendFailure:
    async def test_debit_stands_and_entry_is_queued(
        self, ledger, funded_user, backfill, monkeypatch
    ):
        user = await funded_user(10)
        monkeypatch.setattr(
            ledger.log, "append", AsyncMock(side_effect=InternalError("log down"))
        )

        result = await ledger.spend(user, 4, "AI reply", "k1")

        assert result.balance == 6
        assert result.logged is False
        assert await ledger.get_balance(user) == 6
        pending = await backfill.get("k1")
        assert pending.amount == -4
        assert pending.balance_after == 6

    async def test_retry_while_pending_does_not_double_charge(
        self, ledger, funded_user, monkeypatch
    ):
        user = await funded_user(10)
        monkeypatch.setattr(
            ledger.log, "append", AsyncMock(side_effect=InternalError("log down"))
        )

        await ledger.spend(user, 4, "AI reply", "k1")
        retry = await ledger.spend(user, 4, "AI reply", "k1")

        assert retry.replayed is True
        assert retry.balance == 6
        assert await ledger.get_balance(user) == 6

    async def test_drift_is_explained_then_backfilled(
        self, db, ledger, funded_user, backfill, settings, monkeypatch
    ):
        user = await funded_user(10)
        monkeypatch.setattr(
            ledger.log, "append", AsyncMock(side_effect=InternalError("log down"))
        )
        await ledger.spend(user, 4, "AI reply", "k1")

        recovered = LedgerService(db, backfill, settings)
        report = await recovered.reconcile(user)
        assert report.drift == -4
        assert report.pending_backfill == -4
        assert report.is_consistent

        stats = await recovered.drain_backfill()

        assert stats == {"written": 1, "already_logged": 0, "conflicting": 0, "failed": 0}
        assert await backfill.get("k1") is None
        assert (await recovered.log.get("k1")).amount == -4
        assert (await recovered.reconcile(user)).drift == 0

    async def test_rejected_insert_keeps_debit(self, db, ledger, funded_user, backfill):
        user = await funded_user(10)
        await run_sql(
            db,
            "CREATE TRIGGER reject_debits BEFORE INSERT ON credit_transactions "
            "WHEN NEW.amount < 0 BEGIN SELECT RAISE(ABORT, 'transaction log offline'); END",
        )

        result = await ledger.spend(user, 4, "AI reply", "k1")

        assert result.logged is False
        assert await ledger.get_balance(user) == 6
        assert await ledger.log.get("k1") is None
        assert (await backfill.get("k1")).balance_after == 6

        retry = await ledger.spend(user, 4, "AI reply", "k1")
        assert retry.replayed is True
        assert retry.balance == 6

        await run_sql(db, "DROP TRIGGER reject_debits")
        stats = await ledger.drain_backfill()

        assert stats["written"] == 1
        assert (await ledger.reconcile(user)).drift == 0

    async def test_drain_keeps_entry_shadowed_by_other_operation(
        self, ledger, make_ledger, funded_user, backfill
    ):
        await funded_user(10, "alice")
        await funded_user(10, "bob")
        await make_ledger().spend("alice", 3, "AI reply", "k1")
        await backfill.push(
            TransactionEntry(
                id="k1",
                user_id="bob",
                action_type=TransactionType.SPEND,
                amount=-4,
                balance_after=6,
            )
        )

        stats = await ledger.drain_backfill()

        assert stats == {"written": 0, "already_logged": 0, "conflicting": 1, "failed": 0}
        assert (await backfill.get("k1")).user_id == "bob"
        assert (await ledger.log.get("k1")).user_id == "alice"

    async def test_queue_outage_does_not_fail_the_spend(
        self, db, funded_user, settings, monkeypatch
    ):
        user = await funded_user(10)
        broken_redis = AsyncMock()
        broken_redis.hget.return_value = None
        broken_redis.hset.side_effect = redis.ConnectionError("redis down")
        ledger = LedgerService(db, BackfillQueue(broken_redis, "test:backfill"), settings)
        monkeypatch.setattr(
            ledger.log, "append", AsyncMock(side_effect=InternalError("log down"))
        )

        result = await ledger.spend(user, 4, "AI reply", "k1")

        assert result.balance == 6
        assert result.logged is False


class TestEarn:
    async def test_round_trip(self, ledger, funded_user):
        user = await funded_user(50)

        await ledger.earn(user, 25, "Promo")
        result = await ledger.spend(user, 25, "AI reply", "k1")

        assert result.balance == 50

    async def test_earn_then_two_spends(self, ledger):
        await ledger.open_account("carol")

        await ledger.earn("carol", 100, "Credit pack", TransactionType.PURCHASE)
        await ledger.spend("carol", 20, "Bulk send", "s1")
        await ledger.spend("carol", 20, "Bulk send", "s2")

        page = await ledger.list_transactions("carol")
        assert page.total == 3
        assert sum(item.amount for item in page.items) == 60
        assert await ledger.get_balance("carol") == 60

        summary = await ledger.summarize("carol")
        assert summary.total_purchased == 100
        assert summary.total_spent == 40
        assert summary.net == 60

    async def test_spend_is_not_a_credit_type(self, ledger, funded_user):
        user = await funded_user(0)

        with pytest.raises(ValidationError):
            await ledger.earn(user, 5, "x", source_type=TransactionType.SPEND)

    async def test_log_failure_rolls_back_credit(self, ledger, funded_user, monkeypatch):
        user = await funded_user(10)
        monkeypatch.setattr(
            ledger.log, "append", AsyncMock(side_effect=InternalError("log down"))
        )

        with pytest.raises(InternalError):
            await ledger.earn(user, 5, "Promo")
        assert await ledger.get_balance(user) == 10

    async def test_idempotent_earn(self, ledger, funded_user):
        user = await funded_user(0)

        first = await ledger.earn(
            user, 40, "Purchase", TransactionType.PURCHASE, idempotency_key="pi_1"
        )
        retry = await ledger.earn(
            user, 40, "Purchase", TransactionType.PURCHASE, idempotency_key="pi_1"
        )

        assert first.balance == 40
        assert retry.replayed is True
        assert await ledger.get_balance(user) == 40


class TestTransactions:
    async def test_newest_first_with_pagination(self, ledger, funded_user):
        user = await funded_user(100)
        for i in range(5):
            await ledger.spend(user, 1, f"spend {i}", f"k{i}")

        page = await ledger.list_transactions(user, pagination=PaginationParams(limit=2, offset=0))

        assert page.total == 6
        assert len(page.items) == 2
        assert page.has_more is True
        assert page.items[0].balance_after == 95

    async def test_filter_by_type(self, ledger, funded_user):
        user = await funded_user(100)
        await ledger.spend(user, 10, "spend", "k1")

        page = await ledger.list_transactions(user, TransactionFilters(TransactionType.EARN))

        assert page.total == 1
        assert page.items[0].amount == 100

    async def test_date_range(self, ledger, funded_user):
        user = await funded_user(100)
        now = utcnow()

        around = TransactionFilters(
            start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1)
        )
        later = TransactionFilters(start_date=now + timedelta(hours=1))

        assert (await ledger.list_transactions(user, around)).total == 1
        assert (await ledger.list_transactions(user, later)).total == 0

    async def test_inverted_date_range(self, ledger, funded_user):
        user = await funded_user(100)
        now = utcnow()

        with pytest.raises(ValidationError):
            await ledger.list_transactions(
                user, TransactionFilters(start_date=now, end_date=now - timedelta(days=1))
            )

    async def test_limit_is_capped(self, ledger, funded_user):
        user = await funded_user(10)

        page = await ledger.list_transactions(user, pagination=PaginationParams(limit=500))

        assert page.limit == ledger.settings.transactions_max_limit


class TestAccountLifecycle:
    async def test_signup_grant(self, db, backfill, settings):
        settings.signup_grant_credits = 25
        ledger = LedgerService(db, backfill, settings)

        assert await ledger.open_account("dave") == 25
        assert await ledger.open_account("dave") == 25

        record = await ledger.log.get("signup:dave")
        assert record.amount == 25
        assert record.action_type == TransactionType.EARN

    async def test_close_account_cascades(self, ledger, funded_user):
        user = await funded_user(10)
        await ledger.spend(user, 3, "AI reply", "k1")

        await ledger.close_account(user)

        with pytest.raises(NotFoundError):
            await ledger.get_balance(user)
        assert await ledger.log.get("k1") is None

    async def test_close_unknown_account(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.close_account("ghost")
