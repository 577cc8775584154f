"""Pending-backfill queue for transactions whose log write failed.

When the balance mutation committed but the log append did not, the entry
is parked here (a Redis hash keyed by transaction id) until the backfill task
writes it. The ledger also consults the queue during idempotent replay, so a
retried spend whose log row is still pending is not charged twice.
"""

import logging

import redis.asyncio as redis

from points_ledger.services.transaction_log import TransactionEntry

logger = logging.getLogger(__name__)


class BackfillQueue:
    """Redis-backed map of transaction id -> pending TransactionEntry."""

    def __init__(self, client: redis.Redis, key: str = "points:backfill"):
        self.client = client
        self.key = key

    async def push(self, entry: TransactionEntry) -> None:
        await self.client.hset(self.key, entry.id, entry.model_dump_json())
        logger.warning(
            "Queued transaction %s for backfill (user=%s amount=%+d)",
            entry.id,
            entry.user_id,
            entry.amount,
        )

    async def get(self, transaction_id: str) -> TransactionEntry | None:
        raw = await self.client.hget(self.key, transaction_id)
        if raw is None:
            return None
        return TransactionEntry.model_validate_json(raw)

    async def pending(self) -> list[TransactionEntry]:
        """All queued entries, oldest mutation first."""
        raw_entries = await self.client.hvals(self.key)
        entries = [TransactionEntry.model_validate_json(raw) for raw in raw_entries]
        return sorted(entries, key=lambda e: e.created_at)

    async def pending_for_user(self, user_id: str) -> list[TransactionEntry]:
        return [entry for entry in await self.pending() if entry.user_id == user_id]

    async def remove(self, transaction_id: str) -> None:
        await self.client.hdel(self.key, transaction_id)
