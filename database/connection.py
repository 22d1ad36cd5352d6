"""
Async SQLAlchemy engine and session factory for PostgreSQL (asyncpg).

Usage:
    async with get_async_session() as session:
        result = await session.execute(select(Turn))
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
    pool_timeout=settings.STORE_TIMEOUT_SECONDS,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Context manager for a single request-scoped DB session."""
    async with AsyncSessionLocal() as session:
        yield session
