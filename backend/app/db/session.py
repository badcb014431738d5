"""
Database engine and sessions of the reservations backend.

One async engine per process. Every reservation transition borrows a
session from ``AsyncSessionLocal`` and commits it through ``atomic``;
objects stay usable after commit so a transition can return the row it
just wrote.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from backend.app.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    future=True,
)

# Flushes are explicit; every transition flushes before its audit write
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Declarative base shared by every table of the service
Base = declarative_base()


async def get_db():
    """
    FastAPI dependency yielding one session per request.

    Endpoints hand it to the engine, which opens and closes its own
    transactions on it.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
