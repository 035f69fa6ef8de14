"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.
Row locks (``SELECT ... FOR UPDATE``) and the partial unique indexes on
``match_requests`` / ``truck_postings`` carry the workflow's concurrency
guarantees, so every unit of work runs inside one session transaction.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from loadboard.config import settings

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


@asynccontextmanager
async def transaction(session: AsyncSession):
    """Commit the session's work on success, roll it back on any error."""
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
