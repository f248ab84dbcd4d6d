"""Alembic migration environment for semantic dedup.

The cluster tables live in the CRM's database, next to tables this package does
not own. Migrations therefore:
- target only ``semdedup.db.models.Base`` (never SourceBase)
- keep their own version table so they cannot collide with the CRM's migrations

Configured for async SQLAlchemy.

References:
- https://alembic.sqlalchemy.org/en/latest/cookbook.html#using-asyncio-with-alembic
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from semdedup.config import settings  # noqa: E402
from semdedup.db.models import Base  # noqa: E402

target_metadata = Base.metadata

VERSION_TABLE = "semdedup_alembic_version"

config.set_main_option("sqlalchemy.url", settings.database_url)


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        version_table=VERSION_TABLE,
        compare_type=True,
        **kwargs,
    )


def do_run_migrations(connection: Connection) -> None:
    """Execute migrations against a live connection."""
    _configure(connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations online through a NullPool async engine."""
    connectable = create_async_engine(settings.database_url, poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout instead of connecting to a database."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
