"""
Database configuration and connection management.

This module sets up SQLAlchemy with async support for the self-hosted
backend gateway and provides session management utilities.
"""

import logging

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from config import settings

# Create declarative base for models
Base = declarative_base()


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite connections get foreign keys switched on so thread deletion
    cascades to messages.
    """
    engine = create_async_engine(
        database_url,
        echo=False,  # Use LOG_LEVEL=DEBUG for SQLAlchemy logs if needed
        poolclass=NullPool,
        future=True,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Set SQLite pragmas if using SQLite."""
        if "sqlite" in database_url:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Default engine and session maker
engine = build_engine(settings.database_url)
async_session_maker = build_session_maker(engine)


async def create_tables(target: AsyncEngine = None):
    """Create all database tables."""
    # Import models to ensure they're registered
    import models  # noqa

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logging.info("Database tables created successfully")


async def drop_tables(target: AsyncEngine = None):
    """Drop all database tables (for testing)."""
    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    logging.info("Database tables dropped successfully")


async def check_database_health(target: AsyncEngine = None) -> bool:
    """
    Check if database connection is healthy.

    Returns:
        bool: True if database is accessible, False otherwise
    """
    try:
        async with (target or engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logging.error(f"Database health check failed: {e}")
        return False
