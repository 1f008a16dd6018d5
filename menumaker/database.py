"""
Database Connection Module
Handles the SQLAlchemy async engine (PostgreSQL via psycopg in production,
SQLite via aiosqlite in tests).
"""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from menumaker.core.config import get_settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for a database URL.

    SQLite engines get no pool sizing; its pools do not accept it.
    """
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
        pool_pre_ping=True,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.database_echo)

# Session factory - creates new database sessions
async_session_maker = build_session_maker(engine)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def init_db(bind: AsyncEngine = engine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register the mapped classes on Base.metadata
    import menumaker.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables created successfully!")
