"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine
)

from .config import settings, DatabaseConfig
from .logging import get_logger

logger = get_logger(__name__)

# Global engine and session maker
async_engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(database_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Initialize database connections and return the session maker."""
    global async_engine, async_session_maker

    logger.info("Initializing database connections")

    url = DatabaseConfig.get_database_url(database_url, async_driver=True)
    async_engine = create_async_engine(
        url,
        **DatabaseConfig.get_engine_config(url),
        echo=settings.debug
    )

    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    logger.info("Database connections initialized")
    return async_session_maker


async def close_database() -> None:
    """Close database connections."""
    global async_engine, async_session_maker

    logger.info("Closing database connections")

    if async_engine:
        await async_engine.dispose()

    async_engine = None
    async_session_maker = None

    logger.info("Database connections closed")


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession]
) -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session from the given maker, commit on success and roll back on error.

    Usage:
        async with session_scope(session_maker) as session:
            # Use session here
            pass
    """
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a session from the globally initialized session maker."""
    if not async_session_maker:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with session_scope(async_session_maker) as session:
        yield session


def dialect_insert(session: AsyncSession, model):
    """
    Build an INSERT for the session's dialect that supports ON CONFLICT clauses.

    PostgreSQL in production, SQLite in tests; both expose
    on_conflict_do_nothing / on_conflict_do_update with the same signature.
    """
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upserts are not supported for dialect: {dialect}")


class DatabaseManager:
    """Database manager for administrative operations."""

    @staticmethod
    async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
        """Create all tables in the database."""
        from liquidlab.models.base import Base

        engine = engine or async_engine
        if not engine:
            raise RuntimeError("Database not initialized")

        logger.info("Creating database tables")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    @staticmethod
    async def drop_tables(engine: Optional[AsyncEngine] = None) -> None:
        """Drop all tables in the database."""
        from liquidlab.models.base import Base

        engine = engine or async_engine
        if not engine:
            raise RuntimeError("Database not initialized")

        logger.warning("Dropping all database tables")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("Database tables dropped")

    @staticmethod
    async def health_check(session_maker: Optional[async_sessionmaker[AsyncSession]] = None) -> bool:
        """Check database connectivity."""
        session_maker = session_maker or async_session_maker
        if not session_maker:
            return False
        try:
            async with session_scope(session_maker) as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
