"""Points Ledger - Balance and transaction models.

1. Credit Balance - authoritative per-user balance, mutated only through
   conditional updates issued by the balance store
2. Credit Transaction - append-only audit record of every balance mutation

Timestamps are naive UTC in plain DATETIME columns.
"""

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from points_ledger.utils.helpers import utcnow

# Largest value a signed 64-bit balance column can hold
MAX_CREDITS = 2**63 - 1


# =============================================================================
# 1. Credit Balance
# =============================================================================


class CreditBalance(SQLModel, table=True):
    """Per-user credit balance.

    Attributes:
        user_id: Owner (identity supplied by the auth layer)
        credits: Current balance, never negative
        version: Bumped on every mutation
        created_at: Account provisioning time
        updated_at: Last mutation time
    """

    __tablename__ = "credit_balances"
    __table_args__ = (sa.CheckConstraint("credits >= 0", name="ck_credit_balances_non_negative"),)

    user_id: str = Field(primary_key=True, max_length=64)
    credits: int = Field(
        default=0,
        sa_column=sa.Column(sa.BigInteger, nullable=False, default=0),
        description="Current balance",
    )
    version: int = Field(default=0, description="Mutation counter")

    created_at: datetime = Field(
        default_factory=utcnow, sa_column=sa.Column(sa.DateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=sa.Column(sa.DateTime, nullable=False)
    )


# =============================================================================
# 2. Credit Transaction
# =============================================================================


class TransactionType(str, Enum):
    """Kind of balance mutation."""

    SPEND = "spend"  # gated action debit
    EARN = "earn"  # generic grant (signup bonus, promotions)
    PURCHASE = "purchase"  # settled credit-pack purchase
    SUBSCRIPTION = "subscription"  # subscription period grant
    REFUND = "refund"  # credits returned for a failed action
    REFERRAL_REWARD = "referral_reward"  # referral completion reward


CREDIT_TYPES = frozenset(
    {
        TransactionType.EARN,
        TransactionType.PURCHASE,
        TransactionType.SUBSCRIPTION,
        TransactionType.REFUND,
        TransactionType.REFERRAL_REWARD,
    }
)


class CreditTransaction(SQLModel, table=True):
    """Immutable record of one balance mutation.

    Attributes:
        id: Caller-supplied idempotency key or server-generated id
        user_id: Owner of the balance that changed
        action_type: Type of mutation
        amount: Signed change (negative for spend)
        balance_after: Balance right after this mutation
        description: Human readable reason
        lead_id / message_id / campaign_id: Optional references to what was paid for
        created_at: Record creation time
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (sa.Index("ix_credit_transactions_user_created", "user_id", "created_at"),)

    id: str = Field(primary_key=True, max_length=128)
    user_id: str = Field(max_length=64, index=True)

    action_type: TransactionType = Field(index=True, description="Type of balance change")
    amount: int = Field(
        sa_column=sa.Column(sa.BigInteger, nullable=False),
        description="Change amount (positive=add, negative=deduct)",
    )
    balance_after: int = Field(
        sa_column=sa.Column(sa.BigInteger, nullable=False),
        description="Balance after change",
    )
    description: str = Field(default="", max_length=500)

    lead_id: str | None = Field(default=None, max_length=128)
    message_id: str | None = Field(default=None, max_length=128)
    campaign_id: str | None = Field(default=None, max_length=128)

    created_at: datetime = Field(
        default_factory=utcnow, sa_column=sa.Column(sa.DateTime, nullable=False)
    )
