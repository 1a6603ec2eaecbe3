"""Async SQLAlchemy engine and sessions for the quote store."""
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from app.core.config import settings
import logging
import re
from typing import AsyncGenerator

logger = logging.getLogger(__name__)


def mask_db_url(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:****@', url)


def build_engine(url: str, **overrides) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    SQLite (aiosqlite) gets the driver defaults; server databases get a
    bounded connection pool.
    """
    engine_args = {
        "echo": settings.log_level == "DEBUG",  # Log all SQL if DEBUG
        "pool_pre_ping": True,
    }

    if not url.startswith("sqlite"):
        engine_args.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
            "pool_recycle": 3600,  # Recycle connections every hour
        })

    engine_args.update(overrides)
    logger.info(f"Connecting to database: {mask_db_url(url)}")
    return create_async_engine(url, **engine_args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine(settings.database_url)
AsyncSessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database sessions.

    NOTE: This dependency does NOT auto-commit.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session rolled back due to error: {str(e)}", exc_info=True)
            raise


async def init_db():
    """Create any missing tables (Alembic owns real migrations)."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database tables: {str(e)}", exc_info=True)
        logger.debug(f"Database URL (masked): {mask_db_url(settings.database_url)}")
        raise


async def close_db():
    """Dispose of the engine's connection pool."""
    await engine.dispose()
    logger.info("Database engine disposed")
