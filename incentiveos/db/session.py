"""Async engine, session factory and the request-scoped session dependency.

Rule sets, committed data, result batches and flywheel tables all share
``Base.metadata``; ``DATABASE_URL`` picks asyncpg in deployments and
aiosqlite in tests.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from incentiveos.config.settings import get_settings


class Base(DeclarativeBase):
    """Declarative base for the incentiveos tables."""


_settings = get_settings()

engine = create_async_engine(
    _settings.DATABASE_URL,
    echo=(_settings.ENVIRONMENT == "dev"),
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Request session: committed on success, rolled back on error.

    Repositories flush and never commit. A calculation run is the exception:
    the runner commits after each result batch so a cancelled run keeps the
    rows it already wrote.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
