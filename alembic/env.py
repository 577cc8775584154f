"""Alembic environment for the points ledger schema.

Migrates ``credit_balances``, ``credit_transactions`` and ``referral_rewards``.
The database URL comes from the service settings (``DATABASE_URL``), so
migrations always target the same database the API and workers use:
``mysql+aiomysql`` in production, ``sqlite+aiosqlite`` in development.
"""

import asyncio
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Register ledger tables on SQLModel.metadata for autogenerate
from points_ledger.core.config import get_settings  # noqa: E402
from points_ledger.models.ledger import CreditBalance, CreditTransaction  # noqa: F401, E402
from points_ledger.models.reward import ReferralReward  # noqa: F401, E402

target_metadata = SQLModel.metadata

# Offline SQL rendering only needs a dialect, not the async driver
_SYNC_DRIVERS = {"+aiomysql": "+pymysql", "+aiosqlite": ""}


def database_url() -> str:
    return get_settings().database_url


def offline_url() -> str:
    url = database_url()
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        url = url.replace(async_driver, sync_driver)
    return url


def _configure(**kwargs) -> None:
    # SQLite cannot ALTER most constraints in place; batch mode rebuilds the table
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        render_as_batch=database_url().startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the ledger DDL as SQL script output without connecting."""
    _configure(url=offline_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Apply migrations over the service's async driver."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = database_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
