"""Ledger maintenance tasks.

- Backfill: write transactions whose log append failed after the balance
  mutation committed (they wait in the Redis backfill queue).
"""

import logging
import time

from points_ledger.core.config import get_settings
from points_ledger.core.redis import close_redis, get_redis, init_redis
from points_ledger.db.engine import close_db, get_session
from points_ledger.services.backfill_queue import BackfillQueue
from points_ledger.services.ledger_service import LedgerService
from points_ledger.tasks.celery_app import celery_app, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="ledger.backfill_transactions")
def backfill_transactions() -> dict:
    """Drain the pending-backfill queue into the transaction log.

    Scheduled by beat every ``backfill_interval_seconds``.

    Returns:
        Dict with per-outcome counts
    """
    return run_async(_backfill_transactions_async())


async def _backfill_transactions_async() -> dict:
    """Async implementation of backfill_transactions."""
    start_time = time.time()
    settings = get_settings()

    await init_redis()
    try:
        async with get_session() as db:
            queue = BackfillQueue(get_redis(), settings.backfill_queue_key)
            stats = await LedgerService(db, queue).drain_backfill()
        return {"success": True, **stats, "elapsed": round(time.time() - start_time, 3)}
    except Exception as e:
        logger.exception("[backfill_transactions] pass failed: %s", e)
        return {"success": False, "error": str(e)}
    finally:
        await close_redis()
        await close_db()
