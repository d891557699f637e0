"""
Database connection handle.

A single ``Database`` instance owns the async engine and the session factory.
It is created when the process starts (API lifespan, reminder worker entry
point), handed to every component through its constructor and disposed at
shutdown. No module keeps its own engine.

Usage:
    db = Database.from_settings()
    async with db.session() as session:
        result = await session.execute(select(Service))
    await db.dispose()
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)


class Database:
    """Owner of the async engine and session factory."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls) -> "Database":
        """Create the engine from DATABASE_* settings."""
        settings = get_settings()
        engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            echo=settings.DATABASE_ECHO,
            pool_pre_ping=True,
        )
        logger.info(
            f"Database engine created (pool_size={settings.DATABASE_POOL_SIZE}, "
            f"max_overflow={settings.DATABASE_MAX_OVERFLOW})"
        )
        return cls(engine)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session; uncommitted work is rolled back on error.

        Callers commit explicitly. Exceptions propagate after the rollback.
        """
        session = self._session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Run ``SELECT 1``; used by startup validation and /health."""
        async with self.session() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")
