"""Database configuration and session management.

Provides async SQLAlchemy engine and session factory.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from storefront.infrastructure.config import settings

# Create async engine
engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Base class for models
Base = declarative_base()


def configure_engine(database_url: str, **engine_kwargs: Any) -> AsyncEngine:
    """Rebind the module engine and session factory to another database.

    Used by tests and tooling that need a database other than the one
    named in settings.

    Args:
        database_url: SQLAlchemy async database URL.
        **engine_kwargs: Extra arguments for create_async_engine.

    Returns:
        The new engine.
    """
    global engine, async_session_factory
    engine = create_async_engine(database_url, **engine_kwargs)
    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine


async def create_all() -> None:
    """Create all tables on the current engine."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_connection() -> bool:
    """Check that the database answers a trivial query.

    Returns:
        True if the database is reachable.
    """
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True

