"""Async SQLAlchemy engine and session factory.

Supports both PostgreSQL (shared state for CI runners) and SQLite (a single
workstation or runner).  Engine type is determined by the database URL
scheme:
  - ``postgresql+asyncpg://`` → connection-pooled PostgreSQL engine
  - ``sqlite+aiosqlite://``   → single-connection SQLite engine
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Cache of async_sessionmaker instances keyed by engine identity to avoid
# re-creating the factory on every get_session call.
_session_factories: dict[int, async_sessionmaker[AsyncSession]] = {}

IN_MEMORY_URL = "sqlite+aiosqlite://"


def _sqlite_path(database_url: str) -> str:
    # sqlite+aiosqlite:///path/to/db
    db_path = database_url.split("///", 1)[-1] if "///" in database_url else ""
    return db_path or ":memory:"


def state_store_exists(database_url: str) -> bool:
    """Return False only for a SQLite file that has not been created yet.

    Server databases are assumed to exist.
    """
    if not database_url.startswith("sqlite"):
        return True
    db_path = _sqlite_path(database_url)
    return db_path == ":memory:" or Path(db_path).is_file()


def get_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Parameters
    ----------
    database_url:
        Connection string (PostgreSQL or SQLite scheme).
    pool_size:
        Number of persistent connections for PostgreSQL (ignored for SQLite).
    max_overflow:
        Maximum overflow connections for PostgreSQL (ignored for SQLite).
    """
    if database_url.startswith("sqlite"):
        from deploy_engine.state.sqlite_adapter import get_local_engine

        return get_local_engine(_sqlite_path(database_url))

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        echo=False,
        connect_args={
            "server_settings": {
                "statement_timeout": "30000",  # 30 s
                "lock_timeout": "10000",  # 10 s
            }
        },
    )
    logger.info(
        "Created async engine pool_size=%d max_overflow=%d",
        pool_size,
        max_overflow,
    )
    return engine


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session with automatic commit/rollback semantics.

    On successful exit the session is committed.  If an exception propagates
    the session is rolled back before the error is re-raised.
    """
    engine_key = id(engine)
    factory = _session_factories.get(engine_key)
    if factory is None or factory.kw.get("bind") is not engine:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _session_factories[engine_key] = factory
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """Create the engine and, for SQLite, the tables.

    PostgreSQL schemas are managed by Alembic migrations instead.
    """
    engine = get_engine(database_url, pool_size=pool_size, max_overflow=max_overflow)
    if database_url.startswith("sqlite"):
        from deploy_engine.state.sqlite_adapter import create_local_tables

        await create_local_tables(engine)
    return engine
