"""Shared fixtures for the points ledger test suite.

Every test gets its own file-backed SQLite database so that separate
sessions really contend for the same rows (an in-memory database is private
to one connection).
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("INTERNAL_SERVICE_TOKEN", "test-service-token")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import points_ledger.models  # noqa: E402, F401
from points_ledger.api.deps import get_backfill_queue  # noqa: E402
from points_ledger.core.config import Settings  # noqa: E402
from points_ledger.db.engine import (  # noqa: E402
    create_engine_from_url,
    create_session_factory,
    get_db,
)
from points_ledger.services.backfill_queue import BackfillQueue  # noqa: E402
from points_ledger.services.ledger_service import LedgerService  # noqa: E402
from points_ledger.services.reward_service import RewardGranter  # noqa: E402

SERVICE_TOKEN = os.environ["INTERNAL_SERVICE_TOKEN"]


class FakeRedis:
    """In-memory stand-in for the hash commands the backfill queue uses."""

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value
        return 1

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hvals(self, key):
        return list(self.hashes.get(key, {}).values())

    async def hdel(self, key, *fields):
        bucket = self.hashes.get(key, {})
        return sum(1 for field in fields if bucket.pop(field, None) is not None)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        internal_service_token=SERVICE_TOKEN,
        conflict_max_retries=3,
        conflict_backoff_base_ms=1,
        transactions_default_limit=50,
        transactions_max_limit=100,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def backfill(fake_redis) -> BackfillQueue:
    return BackfillQueue(fake_redis, "test:backfill")


@pytest.fixture
def ledger(db, backfill, settings) -> LedgerService:
    return LedgerService(db, backfill, settings)


@pytest.fixture
def granter(db, ledger) -> RewardGranter:
    return RewardGranter(db, ledger)


@pytest.fixture
async def make_ledger(session_factory, backfill, settings):
    """Ledger bound to a fresh session, as a concurrent request would get."""
    sessions = []

    def _make() -> LedgerService:
        session = session_factory()
        sessions.append(session)
        return LedgerService(session, backfill, settings)

    yield _make

    for session in sessions:
        await session.close()


@pytest.fixture
async def funded_user(ledger):
    """Account ``user-1`` holding 100 points."""

    async def _fund(amount: int = 100, user_id: str = "user-1") -> str:
        await ledger.open_account(user_id)
        if amount:
            await ledger.earn(user_id, amount, "Test top-up")
        return user_id

    return _fund


@pytest.fixture
async def client(session_factory, backfill):
    from points_ledger.main import create_app

    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_backfill_queue] = lambda: backfill

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def service_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {SERVICE_TOKEN}"}
