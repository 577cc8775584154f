"""Points schemas - Request/Response DTOs for the points API.

Wire format is camelCase; every model also accepts snake_case field names.
"""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from points_ledger.models.ledger import MAX_CREDITS, TransactionType
from points_ledger.services.pricing_service import ActionType
from points_ledger.utils.helpers import format_utc_datetime

# Naive UTC from storage, rendered with a Z suffix
UtcDatetime = Annotated[datetime, PlainSerializer(format_utc_datetime, return_type=str)]

Points = Annotated[int, Field(gt=0, le=MAX_CREDITS, description="Positive whole number of points")]


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


class TransactionRefsMixin(CamelModel):
    """Optional references to what a transaction paid for."""

    lead_id: str | None = Field(default=None, max_length=128)
    message_id: str | None = Field(default=None, max_length=128)
    campaign_id: str | None = Field(default=None, max_length=128)


# ============ Spend / Earn ============


class SpendRequest(TransactionRefsMixin):
    """Debit points before a paid action.

    ``idempotencyKey`` must be generated and stored by the caller before the
    first attempt and reused verbatim on every retry.
    """

    amount: Points
    description: str = Field(default="", max_length=500)
    idempotency_key: str = Field(..., min_length=1, max_length=128)


class SpendActionRequest(TransactionRefsMixin):
    """Debit the priced cost of a gated action."""

    action: ActionType
    count: int = Field(default=1, ge=1, description="Repetitions (e.g. contacts in a bulk send)")
    idempotency_key: str = Field(..., min_length=1, max_length=128)


class EarnRequest(TransactionRefsMixin):
    """Credit points (service-to-service)."""

    amount: Points
    description: str = Field(default="", max_length=500)
    source_type: TransactionType = TransactionType.EARN
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=128)


class LedgerResultResponse(CamelModel):
    """Outcome of a spend or earn."""

    ok: bool = True
    balance: int
    transaction_id: str
    replayed: bool = False
    logged: bool = True


class BalanceResponse(CamelModel):
    ok: bool = True
    balance: int


class AffordabilityResponse(CamelModel):
    ok: bool = True
    balance: int
    required: int
    can_afford: bool


# ============ Transactions ============


class TransactionResponse(CamelModel):
    """One transaction record."""

    id: str
    action_type: TransactionType
    amount: int
    balance_after: int
    description: str
    lead_id: str | None = None
    message_id: str | None = None
    campaign_id: str | None = None
    created_at: UtcDatetime


class TransactionSummaryResponse(CamelModel):
    total_spent: int
    total_earned: int
    total_purchased: int
    total_refunded: int
    net: int


class TransactionListResponse(CamelModel):
    """A page of transactions plus per-type totals over all of them."""

    ok: bool = True
    items: list[TransactionResponse]
    total: int
    limit: int
    offset: int
    has_more: bool
    current_balance: int
    summary: TransactionSummaryResponse


# ============ Pricing ============


class ActionCostsResponse(CamelModel):
    ok: bool = True
    costs: dict[str, int]


class SmsEstimateRequest(CamelModel):
    message: str = Field(default="", max_length=10_000)
    media_count: int = Field(default=0, ge=0)


class SmsEstimateResponse(CamelModel):
    ok: bool = True
    credits: int
    segments: int
    character_count: int
    has_media: bool
    media_count: int
    breakdown: str


class CampaignEstimateRequest(CamelModel):
    message: str = Field(default="", max_length=10_000)
    lead_count: int = Field(..., ge=0)
    media_count: int = Field(default=0, ge=0)


class CampaignEstimateResponse(CamelModel):
    ok: bool = True
    credits_per_message: int
    total_credits: int
    total_leads: int
    breakdown: str


# ============ Accounts & Audit ============


class OpenAccountRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)


class AccountResponse(CamelModel):
    ok: bool = True
    user_id: str
    balance: int


class OkResponse(CamelModel):
    ok: bool = True


class ReconciliationResponse(CamelModel):
    """Balance vs. signed transaction sum for one user."""

    ok: bool = True
    user_id: str
    balance: int
    ledger_sum: int
    pending_backfill: int
    drift: int
    consistent: bool
