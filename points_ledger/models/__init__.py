"""Models module - SQLModel database entities."""

from points_ledger.models.ledger import (
    CREDIT_TYPES,
    MAX_CREDITS,
    CreditBalance,
    CreditTransaction,
    TransactionType,
)
from points_ledger.models.reward import REWARD_TRANSITIONS, ReferralReward, RewardStatus

__all__ = [
    # Ledger
    "CreditBalance",
    "CreditTransaction",
    "TransactionType",
    "CREDIT_TYPES",
    "MAX_CREDITS",
    # Rewards
    "ReferralReward",
    "RewardStatus",
    "REWARD_TRANSITIONS",
]
