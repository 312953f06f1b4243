"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  Each
ledger commit opens its own short transaction, so the pool only needs to
cover concurrent requests, not long-lived sessions.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from carpool.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=20,
    max_overflow=10,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create missing tables (local development; production uses Alembic)."""
    from carpool.infrastructure import models  # noqa: F401  registers tables

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
