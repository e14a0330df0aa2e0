"""
Database engine and session management.

Provides async SQLAlchemy engine and session factory shared by the API
and the sync jobs.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardmirror.config import settings
from cardmirror.models.db import Base

# Create async engine
engine = create_async_engine(
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


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Commits on success and rolls back on database errors.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Create the catalog tables if they do not exist.

    Called once at application startup and before CLI sync runs.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
