"""Referral reward tasks."""

import logging

from points_ledger.db.engine import close_db, get_session
from points_ledger.services.ledger_service import LedgerService
from points_ledger.services.reward_service import RewardGranter
from points_ledger.tasks.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="rewards.expire_rewards")
def expire_rewards() -> dict:
    """Flip overdue active rewards to expired.

    Reads already apply the same check on access; this keeps stored state
    current for reporting.
    """
    return run_async(_expire_rewards_async())


async def _expire_rewards_async() -> dict:
    try:
        async with get_session() as db:
            granter = RewardGranter(db, LedgerService(db))
            expired = await granter.expire_due_rewards()
        return {"success": True, "expired": expired}
    except Exception as e:
        logger.exception("[expire_rewards] sweep failed: %s", e)
        return {"success": False, "error": str(e)}
    finally:
        await close_db()
