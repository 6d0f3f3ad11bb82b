"""
Database Connection Module
Handles the relational store through the SQLAlchemy async engine.
PostgreSQL (psycopg) in deployment, SQLite (aiosqlite) in tests.
"""

import logging
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from orderdesk.core.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

engine_options = {"echo": settings.database_echo}
if not settings.is_sqlite:
    engine_options.update(pool_size=5, max_overflow=10)

engine = create_async_engine(settings.database_url, **engine_options)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register every mapped class on Base.metadata before create_all
    from orderdesk import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
