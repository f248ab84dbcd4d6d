"""Async database engine and session factory for semantic dedup.

Usage:
    from semdedup.db.session import AsyncSessionFactory

    async with AsyncSessionFactory() as session:
        result = await session.execute(select(SemanticCluster))

IMPORTANT: Each operation must get its own session from the factory.
AsyncSession is NOT safe to share across concurrent coroutines or requests.
"""

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from semdedup.config import settings

# asyncpg enforces the per-statement timeout server-side
_connect_args = (
    {"command_timeout": settings.db_command_timeout_seconds}
    if "+asyncpg" in settings.database_url
    else {}
)

# Module-level async engine, shared across the process lifetime
engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=10,
    max_overflow=20,
    connect_args=_connect_args,
)

# expire_on_commit=False keeps ORM objects accessible after commit
AsyncSessionFactory = async_sessionmaker(engine, expire_on_commit=False)

