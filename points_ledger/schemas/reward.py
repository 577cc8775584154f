"""Referral reward schemas."""

from pydantic import Field

from points_ledger.models.reward import RewardStatus
from points_ledger.schemas.ledger import CamelModel, Points, UtcDatetime


class GrantRewardRequest(CamelModel):
    """Grant a referral reward (service-to-service).

    ``ttlSeconds`` defaults to the configured reward lifetime; 0 creates the
    reward already expired.
    """

    user_id: str = Field(..., min_length=1, max_length=64)
    reward_type: str = Field(..., min_length=1, max_length=50)
    value: Points
    ttl_seconds: int | None = Field(default=None, ge=0)
    referral_id: str | None = Field(default=None, min_length=1, max_length=128)
    apply_now: bool = True


class GrantRewardResponse(CamelModel):
    ok: bool = True
    reward_id: str
    status: RewardStatus
    expires_at: UtcDatetime


class RewardResponse(CamelModel):
    """One reward record."""

    id: str
    user_id: str
    referral_id: str | None = None
    reward_type: str
    reward_value: int
    status: RewardStatus
    is_active: bool
    granted_at: UtcDatetime
    expires_at: UtcDatetime
    consumed_at: UtcDatetime | None = None
    expired_at: UtcDatetime | None = None
    transaction_id: str | None = None


class RewardListResponse(CamelModel):
    ok: bool = True
    items: list[RewardResponse]


class ConsumeRewardResponse(CamelModel):
    ok: bool = True
    reward: RewardResponse
    balance: int
