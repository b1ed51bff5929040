"""Database engine, session factory, and declarative base.

A single DeclarativeBase holds every inventory and production table.

Session dependency for FastAPI:
  - get_db()  → one transaction per request; commit on success,
                rollback on any exception (including domain errors),
                queued cache invalidations run only after the commit
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from factoryledger.config import settings
from factoryledger.utils.cache import discard_pending_invalidations, run_pending_invalidations

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    """Declarative base for all FactoryLedger models."""
    pass


# ── Session dependency ──────────────────────────────────────

@asynccontextmanager
async def request_session(factory: async_sessionmaker | None = None):
    """Session whose transaction spans one request or unit of work."""
    async with (factory or async_session)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending_invalidations(session)
            raise
    await run_pending_invalidations(session)


async def get_db() -> AsyncSession:
    async with request_session() as session:
        yield session
