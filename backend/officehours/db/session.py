"""
Async engine and session factory construction.

Sessions are not handed to route handlers directly: the SlotStore owns every
transaction and opens sessions from the factory built here.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from officehours.core.config import get_settings


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    settings = get_settings()
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        # SQLite serializes writers; the timeout covers waits on the file lock
        return create_async_engine(url, connect_args={"timeout": 30})
    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
