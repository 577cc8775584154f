"""Balance store: conditional debit/credit on a single row."""

import pytest
import sqlalchemy as sa

from points_ledger.core.exceptions import NotFoundError, ValidationError
from points_ledger.models.ledger import MAX_CREDITS, CreditBalance, CreditTransaction
from points_ledger.models.reward import ReferralReward
from points_ledger.services.balance_store import BalanceStore, validate_amount


class TestValidateAmount:
    @pytest.mark.parametrize("amount", [0, -1, 1.5, True, "5", None, MAX_CREDITS + 1])
    def test_rejects_invalid_amounts(self, amount):
        with pytest.raises(ValidationError):
            validate_amount(amount)

    def test_accepts_positive_int(self):
        assert validate_amount(7) == 7


class TestBalanceStore:
    async def test_create_is_idempotent(self, db):
        store = BalanceStore(db)

        assert await store.create("alice") is True
        assert await store.create("alice") is False
        await db.commit()

        assert await store.get_credits("alice") == 0

    async def test_debit_within_balance(self, db):
        store = BalanceStore(db)
        await store.create("alice", credits=10)

        result = await store.try_debit("alice", 7)

        assert result.ok is True
        assert result.new_balance == 3

    async def test_debit_beyond_balance_is_refused(self, db):
        store = BalanceStore(db)
        await store.create("alice", credits=5)

        result = await store.try_debit("alice", 6)

        assert result.ok is False
        assert result.new_balance == 5
        assert await store.get_credits("alice") == 5

    async def test_debit_exact_balance_reaches_zero(self, db):
        store = BalanceStore(db)
        await store.create("alice", credits=5)

        result = await store.try_debit("alice", 5)

        assert result.ok is True
        assert result.new_balance == 0

    async def test_unknown_user(self, db):
        store = BalanceStore(db)

        with pytest.raises(NotFoundError):
            await store.try_debit("ghost", 1)
        with pytest.raises(NotFoundError):
            await store.credit("ghost", 1)

    async def test_credit_adds(self, db):
        store = BalanceStore(db)
        await store.create("alice", credits=5)

        assert await store.credit("alice", 10) == 15

    async def test_credit_overflow_is_rejected(self, db):
        store = BalanceStore(db)
        await store.create("alice", credits=MAX_CREDITS - 1)

        with pytest.raises(ValidationError):
            await store.credit("alice", 2)
        assert await store.get_credits("alice") == MAX_CREDITS - 1

    async def test_delete(self, db):
        store = BalanceStore(db)
        await store.create("alice")

        assert await store.delete("alice") is True
        assert await store.exists("alice") is False


class TestTimestampStorage:
    @pytest.mark.parametrize(
        "column",
        [
            CreditBalance.__table__.c.created_at,
            CreditBalance.__table__.c.updated_at,
            CreditTransaction.__table__.c.created_at,
            ReferralReward.__table__.c.granted_at,
            ReferralReward.__table__.c.expires_at,
            ReferralReward.__table__.c.consumed_at,
            ReferralReward.__table__.c.expired_at,
        ],
        ids=lambda column: f"{column.table.name}.{column.name}",
    )
    def test_naive_datetime_columns(self, column):
        assert type(column.type) is sa.DateTime
        assert column.type.timezone is False

    async def test_naive_timestamps_are_stored(self, db):
        store = BalanceStore(db)
        await store.create("alice", credits=10)
        await store.try_debit("alice", 4)
        await db.commit()

        row = await db.get(CreditBalance, "alice", populate_existing=True)

        assert row.created_at.tzinfo is None
        assert row.updated_at >= row.created_at
