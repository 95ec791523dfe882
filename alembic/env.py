# alembic/env.py
import asyncio
import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

alembic_dir = Path(__file__).resolve().parent
project_root = alembic_dir.parent

if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# --- Alembic Config ---
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# --- Application Imports ---
from app.core.config import settings  # noqa: E402

# Registers users, user_passkeys and webauthn_challenges on Base.metadata
from app.db.base import Base  # noqa: E402

# Naming convention comes from Base.metadata
target_metadata = Base.metadata


def _masked(url: str) -> str:
    if settings.POSTGRES_PASSWORD:
        return url.replace(settings.POSTGRES_PASSWORD, "****")
    return url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (uses a synchronous URL)."""
    sync_url = settings.SYNC_SQLALCHEMY_DATABASE_URL
    logger.info("Running migrations in OFFLINE mode using URL: %s", _masked(sync_url))

    context.configure(
        url=sync_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations in 'online' mode using an ASYNC engine."""
    async_url = settings.ASYNC_SQLALCHEMY_DATABASE_URL
    logger.info("Running migrations in ONLINE mode using URL: %s", _masked(async_url))

    connectable = create_async_engine(async_url, poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
