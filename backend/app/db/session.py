"""
Database session management.

WHY: Billing writes (customer refs, subscription state, freemium resets)
happen inside webhook and request handlers that share one async engine.
Each request gets its own session and commits or rolls back as a unit.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.core.config import settings


# pool_pre_ping recycles connections dropped while the service sat idle
# between webhook bursts.
engine = create_async_engine(
    settings.async_database_url,
    echo=settings.DEBUG,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
)

# expire_on_commit=False keeps billing records readable after the
# checkout flow commits the customer ref mid-request.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get a database session.

    Commits when the request handler returns normally and rolls back
    when it raises, so a failed webhook leaves no partial state.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
