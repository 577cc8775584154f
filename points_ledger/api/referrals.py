"""Referral API - reward grants and the user's reward list."""

from fastapi import APIRouter, Query

from points_ledger.api.deps import CurrentUserId, InternalService, Ledger, Rewards
from points_ledger.schemas.reward import (
    ConsumeRewardResponse,
    GrantRewardRequest,
    GrantRewardResponse,
    RewardListResponse,
    RewardResponse,
)

router = APIRouter(prefix="/referral", tags=["Referral"])


@router.post("/grant-reward", response_model=GrantRewardResponse, dependencies=[InternalService])
async def grant_reward(data: GrantRewardRequest, rewards: Rewards) -> GrantRewardResponse:
    """Grant a referral reward when a referral completes.

    Internal only. Repeating a grant with the same ``referralId`` returns the
    reward created the first time.
    """
    reward = await rewards.grant_referral_reward(
        data.user_id,
        data.reward_type,
        data.value,
        ttl_seconds=data.ttl_seconds,
        referral_id=data.referral_id,
        apply_now=data.apply_now,
    )
    return GrantRewardResponse(
        reward_id=reward.id, status=reward.status, expires_at=reward.expires_at
    )


@router.get("/rewards", response_model=RewardListResponse)
async def list_rewards(
    user_id: CurrentUserId,
    rewards: Rewards,
    active: bool = Query(False, description="Only rewards that can still be consumed"),
) -> RewardListResponse:
    items = await rewards.list_rewards(user_id, active_only=active)
    return RewardListResponse(items=[RewardResponse.model_validate(r) for r in items])


@router.post("/rewards/{reward_id}/consume", response_model=ConsumeRewardResponse)
async def consume_reward(
    reward_id: str,
    user_id: CurrentUserId,
    rewards: Rewards,
    ledger: Ledger,
) -> ConsumeRewardResponse:
    """Apply a deferred reward to the caller's balance."""
    reward = await rewards.consume_reward(reward_id, user_id=user_id)
    return ConsumeRewardResponse(
        reward=RewardResponse.model_validate(reward),
        balance=await ledger.get_balance(user_id),
    )
