"""Reward Granter - referral rewards on top of the ledger's earn.

Lifecycle: pending -> active -> expired | consumed

- Grant creates the reward and, unless deferred, applies its value through
  an earn (type referral_reward, transaction id ``reward:<id>``) in the same
  unit of work.
- Expiry is a conditional bulk flip, run by the beat task and on access.
- Consume is a conditional ACTIVE -> CONSUMED flip, so a reward's value is
  applied at most once even under concurrent consumes.
"""

import logging
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from points_ledger.core.exceptions import (
    InvalidRewardStateError,
    NotFoundError,
    RewardNotFoundError,
    ValidationError,
)
from points_ledger.db.errors import translate_db_error
from points_ledger.models.ledger import TransactionType
from points_ledger.models.reward import ReferralReward, RewardStatus
from points_ledger.services.balance_store import validate_amount, validate_user_id
from points_ledger.services.ledger_service import LedgerService
from points_ledger.utils.helpers import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class RewardGranter:
    """Grant, consume and expire referral rewards."""

    def __init__(self, db: AsyncSession, ledger: LedgerService):
        self.db = db
        self.ledger = ledger

    async def _execute(self, stmt, operation: str):
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise translate_db_error(e, operation) from e

    # =========================================================================
    # Grant
    # =========================================================================

    async def grant_referral_reward(
        self,
        user_id: str,
        reward_type: str,
        value: int,
        ttl_seconds: int | None = None,
        referral_id: str | None = None,
        apply_now: bool = True,
    ) -> ReferralReward:
        """Create a reward and (by default) credit its value, as one unit.

        Args:
            user_id: Recipient
            reward_type: Label such as "referrer_bonus"
            value: Credits the reward is worth
            ttl_seconds: Lifetime; 0 creates the reward already expired
            referral_id: Triggering referral; repeated grants return the first reward
            apply_now: Credit immediately (reward ends CONSUMED) or leave it ACTIVE

        Returns:
            The reward (new, or the existing one for ``referral_id``)

        Raises:
            ValidationError: Bad user, type, value or ttl
            NotFoundError: Recipient has no points account
        """
        validate_user_id(user_id)
        validate_amount(value)
        if not reward_type or len(reward_type) > 50:
            raise ValidationError("Reward type is required (max 50 characters)")
        if ttl_seconds is None:
            ttl_seconds = self.ledger.settings.default_reward_ttl_seconds
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds < 0:
            raise ValidationError("ttlSeconds must be a non-negative integer", {"ttl": ttl_seconds})

        reward_id = str(uuid4())

        async def unit() -> ReferralReward:
            if referral_id is not None:
                existing = await self._find_by_referral(user_id, referral_id)
                if existing is not None:
                    return existing
            if not await self.ledger.balances.exists(user_id):
                raise NotFoundError(f"No points account for user {user_id}", {"user_id": user_id})

            now = utcnow()
            reward = ReferralReward(
                id=reward_id,
                user_id=user_id,
                referral_id=referral_id,
                reward_type=reward_type,
                reward_value=value,
                granted_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            reward.transition(
                RewardStatus.EXPIRED if reward.is_overdue(now) else RewardStatus.ACTIVE, now
            )

            try:
                async with self.db.begin_nested():
                    self.db.add(reward)
                    await self.db.flush()
            except IntegrityError as e:
                # Same referral granted concurrently
                existing = await self._find_by_referral(user_id, referral_id)
                if existing is None:
                    raise translate_db_error(e, "reward create") from e
                return existing
            except SQLAlchemyError as e:
                raise translate_db_error(e, "reward create") from e

            if apply_now and reward.status == RewardStatus.ACTIVE:
                result = await self.ledger.apply_credit(
                    user_id,
                    value,
                    f"Referral reward ({reward_type})",
                    TransactionType.REFERRAL_REWARD,
                    f"reward:{reward.id}",
                )
                reward.transition(RewardStatus.CONSUMED, now)
                reward.transaction_id = result.transaction_id
            return reward

        reward = await self.ledger.run_in_transaction(unit)
        logger.info(
            "Referral reward %s: user=%s type=%s value=%d status=%s",
            reward.id,
            user_id,
            reward_type,
            value,
            reward.status.value,
        )
        return reward

    async def _find_by_referral(
        self, user_id: str, referral_id: str | None
    ) -> ReferralReward | None:
        result = await self._execute(
            select(ReferralReward).where(
                ReferralReward.user_id == user_id,
                ReferralReward.referral_id == referral_id,
            ),
            "reward read",
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Consume
    # =========================================================================

    async def consume_reward(self, reward_id: str, user_id: str | None = None) -> ReferralReward:
        """Apply a deferred reward's value.

        Raises:
            RewardNotFoundError: Unknown reward (or owned by someone else)
            InvalidRewardStateError: Reward already expired or consumed
        """

        async def unit() -> bool:
            now = utcnow()
            await self._expire(now, reward_id=reward_id)
            reward = await self._load(reward_id, user_id)

            claimed = await self._execute(
                update(ReferralReward)
                .where(
                    ReferralReward.id == reward_id,
                    ReferralReward.status == RewardStatus.ACTIVE,
                )
                .values(status=RewardStatus.CONSUMED, is_active=False, consumed_at=now)
                .execution_options(synchronize_session=False),
                "reward consume",
            )
            if claimed.rowcount != 1:
                return False

            result = await self.ledger.apply_credit(
                reward.user_id,
                reward.reward_value,
                f"Referral reward ({reward.reward_type})",
                TransactionType.REFERRAL_REWARD,
                f"reward:{reward.id}",
            )
            await self._execute(
                update(ReferralReward)
                .where(ReferralReward.id == reward_id)
                .values(transaction_id=result.transaction_id)
                .execution_options(synchronize_session=False),
                "reward consume",
            )
            return True

        applied = await self.ledger.run_in_transaction(unit)
        reward = await self.ledger.run_in_transaction(lambda: self._load(reward_id, user_id))
        if not applied:
            raise InvalidRewardStateError(
                f"Reward is {reward.status.value} and cannot be consumed",
                {"reward_id": reward_id, "status": reward.status.value},
            )
        logger.info(
            "Referral reward consumed: id=%s user=%s value=%d",
            reward.id,
            reward.user_id,
            reward.reward_value,
        )
        return reward

    # =========================================================================
    # Expiry & reads
    # =========================================================================

    async def _expire(
        self,
        now: datetime,
        reward_id: str | None = None,
        user_id: str | None = None,
    ) -> int:
        stmt = update(ReferralReward).where(
            ReferralReward.status == RewardStatus.ACTIVE,
            ReferralReward.expires_at <= now,
        )
        if reward_id is not None:
            stmt = stmt.where(ReferralReward.id == reward_id)
        if user_id is not None:
            stmt = stmt.where(ReferralReward.user_id == user_id)
        stmt = stmt.values(
            status=RewardStatus.EXPIRED, is_active=False, expired_at=now
        ).execution_options(synchronize_session=False)
        result = await self._execute(stmt, "reward expiry")
        return result.rowcount

    async def _load(self, reward_id: str, user_id: str | None = None) -> ReferralReward:
        result = await self._execute(
            select(ReferralReward)
            .where(ReferralReward.id == reward_id)
            .execution_options(populate_existing=True),
            "reward read",
        )
        reward = result.scalar_one_or_none()
        if reward is None or (user_id is not None and reward.user_id != user_id):
            raise RewardNotFoundError(f"Reward {reward_id} not found", {"reward_id": reward_id})
        return reward

    async def expire_due_rewards(self, now: datetime | None = None) -> int:
        """Flip every overdue active reward to expired.

        Returns:
            Number of rewards expired
        """
        now = to_naive_utc(now) if now else utcnow()
        count = await self.ledger.run_in_transaction(lambda: self._expire(now))
        if count:
            logger.info("Expired %d referral rewards", count)
        return count

    async def get_reward(self, reward_id: str, user_id: str | None = None) -> ReferralReward:
        async def unit() -> ReferralReward:
            await self._expire(utcnow(), reward_id=reward_id)
            return await self._load(reward_id, user_id)

        return await self.ledger.run_in_transaction(unit)

    async def list_rewards(self, user_id: str, active_only: bool = False) -> list[ReferralReward]:
        """A user's rewards, newest first."""
        validate_user_id(user_id)

        async def unit() -> list[ReferralReward]:
            await self._expire(utcnow(), user_id=user_id)
            query = (
                select(ReferralReward)
                .where(ReferralReward.user_id == user_id)
                .order_by(ReferralReward.granted_at.desc(), ReferralReward.id)
                .execution_options(populate_existing=True)
            )
            if active_only:
                query = query.where(ReferralReward.status == RewardStatus.ACTIVE)
            result = await self._execute(query, "reward list")
            return list(result.scalars().all())

        return await self.ledger.run_in_transaction(unit)
