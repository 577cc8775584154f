"""Points Ledger - Referral reward model."""

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from points_ledger.core.exceptions import InvalidRewardStateError
from points_ledger.utils.helpers import utcnow


class RewardStatus(str, Enum):
    """Reward lifecycle: pending -> active -> expired | consumed."""

    PENDING = "pending"  # being created inside the grant unit
    ACTIVE = "active"  # granted, value not yet applied, not expired
    EXPIRED = "expired"  # expires_at passed before the value was applied
    CONSUMED = "consumed"  # value applied through an earn transaction


REWARD_TRANSITIONS: dict[RewardStatus, frozenset[RewardStatus]] = {
    RewardStatus.PENDING: frozenset({RewardStatus.ACTIVE, RewardStatus.EXPIRED}),
    RewardStatus.ACTIVE: frozenset({RewardStatus.EXPIRED, RewardStatus.CONSUMED}),
    RewardStatus.EXPIRED: frozenset(),
    RewardStatus.CONSUMED: frozenset(),
}


class ReferralReward(SQLModel, table=True):
    """Time-bounded credit grant tied to a referral.

    Rows are never deleted outside account deletion; only the status fields
    change.

    Attributes:
        id: Reward id (uuid string)
        user_id: Recipient
        referral_id: Triggering referral, unique per recipient when present
        reward_type: Free-form label (e.g. "referrer_bonus")
        reward_value: Credits applied when the reward is consumed
        status: Lifecycle state
        is_active: True only while status is ACTIVE
        transaction_id: Earn transaction that applied the value
    """

    __tablename__ = "referral_rewards"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "referral_id", name="uq_referral_rewards_user_referral"),
    )

    id: str = Field(primary_key=True, max_length=36)
    user_id: str = Field(max_length=64, index=True)
    referral_id: str | None = Field(default=None, max_length=128, index=True)

    reward_type: str = Field(max_length=50)
    reward_value: int = Field(sa_column=sa.Column(sa.BigInteger, nullable=False))

    status: RewardStatus = Field(default=RewardStatus.PENDING, index=True)
    is_active: bool = Field(default=False)

    granted_at: datetime = Field(
        default_factory=utcnow, sa_column=sa.Column(sa.DateTime, nullable=False)
    )
    expires_at: datetime = Field(sa_column=sa.Column(sa.DateTime, nullable=False, index=True))
    consumed_at: datetime | None = Field(default=None, sa_column=sa.Column(sa.DateTime))
    expired_at: datetime | None = Field(default=None, sa_column=sa.Column(sa.DateTime))

    transaction_id: str | None = Field(default=None, max_length=128)

    def transition(self, target: RewardStatus, at: datetime) -> None:
        """Move to ``target``, stamping the matching timestamp.

        Raises:
            InvalidRewardStateError: ``target`` is not reachable from the current status
        """
        if target not in REWARD_TRANSITIONS[self.status]:
            raise InvalidRewardStateError(
                f"Reward cannot move from {self.status.value} to {target.value}",
                {"reward_id": self.id, "status": self.status.value},
            )
        self.status = target
        self.is_active = target == RewardStatus.ACTIVE
        if target == RewardStatus.EXPIRED:
            self.expired_at = at
        elif target == RewardStatus.CONSUMED:
            self.consumed_at = at

    def is_overdue(self, now: datetime) -> bool:
        return self.expires_at <= now
