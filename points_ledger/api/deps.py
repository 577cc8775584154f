"""Common FastAPI dependencies for API endpoints."""

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from points_ledger.core.config import get_settings
from points_ledger.core.redis import get_redis
from points_ledger.db.engine import get_db
from points_ledger.services.backfill_queue import BackfillQueue
from points_ledger.services.ledger_service import LedgerService
from points_ledger.services.reward_service import RewardGranter

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Acting user, as asserted by the authenticating gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    if len(x_user_id) > 64:
        raise HTTPException(status_code=400, detail="User id is too long")
    return x_user_id


async def require_internal_service(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Check ``Authorization: Bearer <internal_service_token>``.

    Guards endpoints that only other services may call (earn, reward grants,
    account provisioning).
    """
    settings = get_settings()
    if not settings.internal_service_token:
        logger.error("internal_service_token is not configured; rejecting internal call")
        raise HTTPException(status_code=503, detail="Internal service token not configured")

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing service token")

    token = authorization.removeprefix("Bearer ").strip()
    if not secrets.compare_digest(token, settings.internal_service_token):
        logger.warning("Rejected internal call with an invalid service token")
        raise HTTPException(status_code=403, detail="Invalid service token")


def get_backfill_queue() -> BackfillQueue:
    """Pending-backfill queue on the shared Redis pool."""
    return BackfillQueue(get_redis(), get_settings().backfill_queue_key)


def get_ledger_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    backfill: Annotated[BackfillQueue, Depends(get_backfill_queue)],
) -> LedgerService:
    """Get ledger service instance."""
    return LedgerService(db, backfill)


def get_reward_granter(
    db: Annotated[AsyncSession, Depends(get_db)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> RewardGranter:
    """Get reward granter instance."""
    return RewardGranter(db, ledger)


# ============ Type Aliases for Common Dependencies ============

# Acting user (from the gateway)
CurrentUserId = Annotated[str, Depends(get_current_user_id)]

# Service-to-service caller
InternalService = Depends(require_internal_service)

Ledger = Annotated[LedgerService, Depends(get_ledger_service)]
Rewards = Annotated[RewardGranter, Depends(get_reward_granter)]
