"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Initial database schema for the Points Ledger.
"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TRANSACTION_TYPES = sa.Enum(
    "SPEND",
    "EARN",
    "PURCHASE",
    "SUBSCRIPTION",
    "REFUND",
    "REFERRAL_REWARD",
    name="transactiontype",
)
REWARD_STATUSES = sa.Enum("PENDING", "ACTIVE", "EXPIRED", "CONSUMED", name="rewardstatus")


def upgrade() -> None:
    """Create initial database schema."""
    # Credit balances table
    op.create_table(
        "credit_balances",
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("credits", sa.BigInteger(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("credits >= 0", name="ck_credit_balances_non_negative"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # Credit transactions table
    op.create_table(
        "credit_transactions",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("action_type", TRANSACTION_TYPES, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=False),
        sa.Column("lead_id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("message_id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("campaign_id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_credit_transactions_user_id"), "credit_transactions", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_credit_transactions_action_type"),
        "credit_transactions",
        ["action_type"],
        unique=False,
    )
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", "created_at"],
        unique=False,
    )

    # Referral rewards table
    op.create_table(
        "referral_rewards",
        sa.Column("id", sqlmodel.sql.sqltypes.AutoString(length=36), nullable=False),
        sa.Column("user_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("referral_id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("reward_type", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column("reward_value", sa.BigInteger(), nullable=False),
        sa.Column("status", REWARD_STATUSES, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("granted_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
        sa.Column("expired_at", sa.DateTime(), nullable=True),
        sa.Column("transaction_id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "referral_id", name="uq_referral_rewards_user_referral"),
    )
    op.create_index(
        op.f("ix_referral_rewards_user_id"), "referral_rewards", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_referral_rewards_referral_id"), "referral_rewards", ["referral_id"], unique=False
    )
    op.create_index(
        op.f("ix_referral_rewards_status"), "referral_rewards", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_referral_rewards_expires_at"), "referral_rewards", ["expires_at"], unique=False
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("referral_rewards")
    op.drop_table("credit_transactions")
    op.drop_table("credit_balances")
    TRANSACTION_TYPES.drop(op.get_bind(), checkfirst=True)
    REWARD_STATUSES.drop(op.get_bind(), checkfirst=True)
