# app/db/session.py
from __future__ import annotations

"""
FanVault Media — Database Engine & Session Dependencies

- Async engine/session for the SQL-backed registry and quota ledger.
- PostgreSQL (asyncpg) in production; any SQLAlchemy async URL via
  `DATABASE_URL_OVERRIDE` (e.g. `sqlite+aiosqlite:///./dev.db`).
- Creating the engine does not connect; nothing touches the database until
  the first session is used.
"""

from typing import Any, AsyncGenerator, Dict
import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from app.core.config import settings

logger = logging.getLogger(__name__)

ASYNC_DATABASE_URL: str = settings.ASYNC_DATABASE_URL

# Pool knobs (ignored for SQLite)
_POOL_PRE_PING = True
_POOL_RECYCLE = 1800
_POOL_TIMEOUT = 30
_POOL_SIZE = 10
_MAX_OVERFLOW = 20


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_pre_ping": _POOL_PRE_PING,
        "pool_recycle": _POOL_RECYCLE,
        "pool_size": _POOL_SIZE,
        "max_overflow": _MAX_OVERFLOW,
        "pool_timeout": _POOL_TIMEOUT,
        "echo": False,
    }


# ─────────────────────────────────────────────────────────────────────────────
# ⚡ ASYNC ENGINE
# ─────────────────────────────────────────────────────────────────────────────

async_engine: AsyncEngine = create_async_engine(ASYNC_DATABASE_URL, **_engine_kwargs(ASYNC_DATABASE_URL))

async_session_maker = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async SQLAlchemy session."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transactional_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Async context manager that opens a session and a transaction."""
    async with async_session_maker() as session:
        async with session.begin():
            yield session


async def db_healthcheck() -> bool:
    """Quick SELECT 1 to verify DB connectivity (used by /readyz)."""
    try:
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("DB healthcheck failed")
        return False


__all__ = [
    "async_engine",
    "async_session_maker",
    "get_async_db",
    "transactional_async_session",
    "db_healthcheck",
]
