"""Points Ledger - Celery configuration.

Uses Celery with Redis as message broker for the ledger maintenance jobs.

Usage:
    # Start a worker
    celery -A points_ledger.tasks.celery_app worker -Q ledger -l info

    # Start beat scheduler
    celery -A points_ledger.tasks.celery_app beat -l info
"""

import asyncio

from celery import Celery

from points_ledger.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "points_ledger_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "points_ledger.tasks.ledger",
        "points_ledger.tasks.rewards",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_routes={
        "ledger.*": {"queue": "ledger"},
        "rewards.*": {"queue": "ledger"},
    },
    beat_schedule={
        "backfill-transactions": {
            "task": "ledger.backfill_transactions",
            "schedule": settings.backfill_interval_seconds,
        },
        "expire-rewards": {
            "task": "rewards.expire_rewards",
            "schedule": settings.reward_expiry_interval_seconds,
        },
    },
)


def run_async(coro):
    """Run async coroutine in sync context for Celery."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
