"""Points API - balance, spend/earn and transaction history endpoints."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Query

from points_ledger.api.deps import CurrentUserId, InternalService, Ledger
from points_ledger.models.ledger import TransactionType
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
from points_ledger.services.ledger_service import LedgerResult, TransactionRefs
from points_ledger.services.pricing_service import (
    ACTION_COSTS,
    calculate_sms_credits,
    estimate_campaign_cost,
)
from points_ledger.services.transaction_log import TransactionFilters
from points_ledger.utils.pagination import PaginationParams

router = APIRouter(prefix="/points", tags=["Points"])


def _result_response(result: LedgerResult) -> LedgerResultResponse:
    return LedgerResultResponse(
        balance=result.balance,
        transaction_id=result.transaction_id,
        replayed=result.replayed,
        logged=result.logged,
    )


# =============================================================================
# Spend / Earn
# =============================================================================


@router.post("/spend", response_model=LedgerResultResponse)
async def spend_points(
    user_id: CurrentUserId,
    data: SpendRequest,
    ledger: Ledger,
) -> LedgerResultResponse:
    """Debit points before a paid action.

    Returns 402 with ``insufficientPoints: true`` when the balance does not
    cover the amount. Retrying with the same ``idempotencyKey`` never charges
    twice.
    """
    result = await ledger.spend(
        user_id,
        data.amount,
        data.description,
        data.idempotency_key,
        TransactionRefs(data.lead_id, data.message_id, data.campaign_id),
    )
    return _result_response(result)


@router.post("/spend-action", response_model=LedgerResultResponse)
async def spend_points_for_action(
    user_id: CurrentUserId,
    data: SpendActionRequest,
    ledger: Ledger,
) -> LedgerResultResponse:
    """Debit the priced cost of a gated action (see ``GET /costs``)."""
    result = await ledger.spend_for_action(
        user_id,
        data.action,
        data.idempotency_key,
        count=data.count,
        refs=TransactionRefs(data.lead_id, data.message_id, data.campaign_id),
    )
    return _result_response(result)


@router.post(
    "/earn",
    response_model=LedgerResultResponse,
    dependencies=[InternalService],
)
async def earn_points(
    user_id: CurrentUserId,
    data: EarnRequest,
    ledger: Ledger,
) -> LedgerResultResponse:
    """Credit points (purchases, subscriptions, refunds, promotions).

    Internal only: requires the service bearer token.
    """
    result = await ledger.earn(
        user_id,
        data.amount,
        data.description,
        source_type=data.source_type,
        refs=TransactionRefs(data.lead_id, data.message_id, data.campaign_id),
        idempotency_key=data.idempotency_key,
    )
    return _result_response(result)


# =============================================================================
# Reads
# =============================================================================


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(user_id: CurrentUserId, ledger: Ledger) -> BalanceResponse:
    """Current balance (snapshot; may trail an in-flight debit)."""
    return BalanceResponse(balance=await ledger.get_balance(user_id))


@router.get("/can-afford", response_model=AffordabilityResponse)
async def can_afford(
    user_id: CurrentUserId,
    ledger: Ledger,
    amount: int = Query(..., ge=1, description="Points required"),
) -> AffordabilityResponse:
    """Informational check; the action itself must still call spend."""
    affordable = await ledger.can_afford(user_id, amount)
    balance = await ledger.get_balance(user_id)
    return AffordabilityResponse(balance=balance, required=amount, can_afford=affordable)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    user_id: CurrentUserId,
    ledger: Ledger,
    action_type: TransactionType | Literal["all"] | None = Query(
        None, alias="type", description='Filter by type; "all" means no filter'
    ),
    start_date: datetime | None = Query(None, alias="from", description="Created at or after"),
    end_date: datetime | None = Query(None, alias="to", description="Created at or before"),
    limit: int | None = Query(None, ge=1, description="Page size (server-capped)"),
    offset: int = Query(0, ge=0),
) -> TransactionListResponse:
    """List transactions newest first, with per-type totals and the current balance."""
    if action_type == "all":
        action_type = None
    filters = TransactionFilters(action_type=action_type, start_date=start_date, end_date=end_date)
    pagination = PaginationParams(
        limit=limit or ledger.settings.transactions_default_limit, offset=offset
    )

    page = await ledger.list_transactions(user_id, filters, pagination)
    summary = await ledger.summarize(user_id)
    balance = await ledger.get_balance(user_id)

    return TransactionListResponse(
        items=[TransactionResponse.model_validate(item) for item in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
        current_balance=balance,
        summary=TransactionSummaryResponse(
            total_spent=summary.total_spent,
            total_earned=summary.total_earned,
            total_purchased=summary.total_purchased,
            total_refunded=summary.total_refunded,
            net=summary.net,
        ),
    )


# =============================================================================
# Pricing
# =============================================================================


@router.get("/costs", response_model=ActionCostsResponse)
async def get_action_costs() -> ActionCostsResponse:
    """Point cost of each gated action."""
    return ActionCostsResponse(costs={action.value: cost for action, cost in ACTION_COSTS.items()})


@router.post("/estimate/sms", response_model=SmsEstimateResponse)
async def estimate_sms(data: SmsEstimateRequest) -> SmsEstimateResponse:
    cost = calculate_sms_credits(data.message, data.media_count)
    return SmsEstimateResponse(
        credits=cost.credits,
        segments=cost.segments,
        character_count=cost.character_count,
        has_media=cost.has_media,
        media_count=cost.media_count,
        breakdown=cost.breakdown,
    )


@router.post("/estimate/campaign", response_model=CampaignEstimateResponse)
async def estimate_campaign(data: CampaignEstimateRequest) -> CampaignEstimateResponse:
    estimate = estimate_campaign_cost(data.message, data.lead_count, data.media_count)
    return CampaignEstimateResponse(
        credits_per_message=estimate.credits_per_message,
        total_credits=estimate.total_credits,
        total_leads=estimate.total_leads,
        breakdown=estimate.breakdown,
    )


# =============================================================================
# Accounts (internal)
# =============================================================================


@router.post(
    "/accounts",
    response_model=AccountResponse,
    dependencies=[InternalService],
)
async def open_account(data: OpenAccountRequest, ledger: Ledger) -> AccountResponse:
    """Provision a points account at signup. Idempotent."""
    balance = await ledger.open_account(data.user_id)
    return AccountResponse(user_id=data.user_id, balance=balance)


@router.delete(
    "/accounts/{user_id}",
    response_model=OkResponse,
    dependencies=[InternalService],
)
async def close_account(user_id: str, ledger: Ledger) -> OkResponse:
    """Account deletion: remove balance, transactions and rewards."""
    await ledger.close_account(user_id)
    return OkResponse()


@router.get(
    "/accounts/{user_id}/reconcile",
    response_model=ReconciliationResponse,
    dependencies=[InternalService],
)
async def reconcile_account(user_id: str, ledger: Ledger) -> ReconciliationResponse:
    """Compare the balance with the signed sum of the user's transactions."""
    report = await ledger.reconcile(user_id)
    return ReconciliationResponse(
        user_id=report.user_id,
        balance=report.balance,
        ledger_sum=report.ledger_sum,
        pending_backfill=report.pending_backfill,
        drift=report.drift,
        consistent=report.is_consistent,
    )
