"""Async SQLAlchemy engine and sessions for stored workflows and run logs.

The URL comes from ``DATABASE_URL`` (see workflow_designer.config). SQLite
runs in WAL mode so a streamed run can log its result while the request
session is still open.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sqlalchemy
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from workflow_designer import config


def async_database_url(url: str) -> str:
    """Map plain PostgreSQL URLs onto the asyncpg driver; others pass through."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


DATABASE_URL = async_database_url(config.DATABASE_URL)

engine: AsyncEngine = create_async_engine(
    DATABASE_URL,
    echo=config.DB_ECHO,
    # SQLite doesn't support pool settings
    **({} if is_sqlite(DATABASE_URL) else {"pool_size": 5, "max_overflow": 10}),
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


@asynccontextmanager
async def get_session_ctx() -> AsyncGenerator[AsyncSession, None]:
    """Session committed on success, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_session_ctx() as session:
        yield session


async def init_db() -> None:
    """Create the declarative_workflows and execution_logs tables if missing."""
    import app.models.db  # noqa: F401  (register tables on Base.metadata)

    if is_sqlite(DATABASE_URL):
        async with engine.begin() as conn:
            await conn.execute(sqlalchemy.text("PRAGMA journal_mode=WAL"))
            await conn.execute(sqlalchemy.text("PRAGMA busy_timeout=5000"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
