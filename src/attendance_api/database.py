"""Database connection and session management."""

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from attendance_api.config import get_settings


@lru_cache
def get_engine() -> AsyncEngine:
    """Get the process-wide async engine, created on first use."""
    settings = get_settings()
    return create_async_engine(
        settings.async_database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        # Validate connections before checkout to detect stale connections
        pool_pre_ping=True,
        pool_recycle=3600,
        # Never echo SQL; statements may carry personal data
        echo=False,
    )


@lru_cache
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the session factory bound to the process-wide engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )
