"""Database connection and session management.

This module handles the async database connection using SQLAlchemy's asyncio
extension. SQLite (via aiosqlite) is the default backend.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import DATA_DIR, DATABASE_ECHO, DATABASE_URL
from models.base import Base
# Import models to ensure they are registered with Base.metadata
import models  # noqa: F401

logger = logging.getLogger(__name__)

if DATABASE_URL.startswith("sqlite"):
    # Ensure data directory exists
    DATA_DIR.mkdir(parents=True, exist_ok=True)


def build_engine(url: str = DATABASE_URL, echo: bool = DATABASE_ECHO) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    """Create a session factory whose objects stay usable after commit."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()

async_session_factory = build_session_factory(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create every table that does not exist yet."""
    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Identity store tables ready")


@asynccontextmanager
async def get_session(factory: Optional[async_sessionmaker] = None) -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session that commits on success.

    Usage:
        async with get_session() as session:
            # use session
    """
    factory = factory or async_session_factory
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            # BaseException so a cancelled task still rolls back
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting a database session."""
    async with get_session() as session:
        yield session


async def check_connection(bind: Optional[AsyncEngine] = None) -> bool:
    """Check if database connection is working."""
    bind = bind or engine
    try:
        async with bind.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database connection check failed: %s", e)
        return False
