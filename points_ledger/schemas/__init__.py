"""Schemas module - Pydantic DTOs for request/response."""

from points_ledger.schemas.ledger import (
    AccountResponse,
    ActionCostsResponse,
    AffordabilityResponse,
    BalanceResponse,
    CampaignEstimateRequest,
    CampaignEstimateResponse,
    EarnRequest,
    LedgerResultResponse,
    OkResponse,
    OpenAccountRequest,
    ReconciliationResponse,
    SmsEstimateRequest,
    SmsEstimateResponse,
    SpendActionRequest,
    SpendRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionSummaryResponse,
)
from points_ledger.schemas.reward import (
    ConsumeRewardResponse,
    GrantRewardRequest,
    GrantRewardResponse,
    RewardListResponse,
    RewardResponse,
)

__all__: list[str] = [
    # Points
    "SpendRequest",
    "SpendActionRequest",
    "EarnRequest",
    "LedgerResultResponse",
    "BalanceResponse",
    "AffordabilityResponse",
    "TransactionResponse",
    "TransactionSummaryResponse",
    "TransactionListResponse",
    # Pricing
    "ActionCostsResponse",
    "SmsEstimateRequest",
    "SmsEstimateResponse",
    "CampaignEstimateRequest",
    "CampaignEstimateResponse",
    # Accounts
    "OpenAccountRequest",
    "AccountResponse",
    "OkResponse",
    "ReconciliationResponse",
    # Rewards
    "GrantRewardRequest",
    "GrantRewardResponse",
    "RewardResponse",
    "RewardListResponse",
    "ConsumeRewardResponse",
]
