"""Points Ledger Tasks Module."""

from points_ledger.tasks.celery_app import celery_app
from points_ledger.tasks.ledger import backfill_transactions
from points_ledger.tasks.rewards import expire_rewards

__all__ = [
    "celery_app",
    "backfill_transactions",
    "expire_rewards",
]
