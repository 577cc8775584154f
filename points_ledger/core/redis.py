"""Redis client for the points ledger.

Redis holds the pending-backfill queue: spend entries whose log append
failed after the debit committed. The API process opens the client in its
lifespan; each Celery task opens and closes its own, since every task runs
in a fresh event loop.
"""

import redis.asyncio as redis

from points_ledger.core.config import get_settings

_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Open the shared client if it is not open yet.

    Responses are decoded to ``str`` because queue payloads are JSON text.
    """
    global _client
    if _client is None:
        _client = redis.from_url(
            get_settings().redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client.

    Raises:
        RuntimeError: ``init_redis()`` has not run in this process
    """
    if _client is None:
        raise RuntimeError("Redis client is not open; call init_redis() first")
    return _client
