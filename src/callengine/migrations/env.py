"""
Alembic environment for the call engine schema.

The database URL comes from ``sqlalchemy.url`` when set, otherwise from the
application settings (``DATABASE_URL``). Migrations run on the async engine.
"""

import asyncio

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

import callengine.callbacks.models  # noqa: F401
import callengine.telephony.models  # noqa: F401
from callengine.config import get_settings
from callengine.shared.database import Base
from callengine.shared.logging import get_logger, setup_logging

config = context.config
target_metadata = Base.metadata

if config.attributes.get("configure_logging", True):
    setup_logging()

logger = get_logger(__name__)


def _database_url() -> str:
    return config.get_main_option("sqlalchemy.url") or get_settings().database_url


def run_migrations_offline() -> None:
    """Emit SQL to stdout without a database connection."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    logger.info("Running migrations", extra={"dialect": engine.dialect.name})
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
