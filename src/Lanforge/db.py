# src/Lanforge/db.py
from __future__ import annotations

import contextlib
import os
from collections.abc import AsyncIterator
from typing import Any

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from Lanforge.config import load_settings

log = structlog.get_logger()

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def _normalize_url(url: str) -> str:
    """Swap a sync driver URL for its async equivalent."""
    for sync_prefix, async_prefix in _ASYNC_DRIVERS.items():
        if url.startswith(sync_prefix):
            return async_prefix + url[len(sync_prefix):]
    return url


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    return _normalize_url(load_settings().database_url)


def _engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite+aiosqlite://"):
        opts: dict[str, Any] = {"connect_args": {"timeout": 30}}
        # One shared connection keeps an in-memory schema alive across sessions
        if ":memory:" in database_url or os.environ.get("LANFORGE_SQLITE_STATIC_POOL") == "1":
            opts["poolclass"] = StaticPool
        return opts
    if database_url.startswith("postgresql+asyncpg://"):
        return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10, "pool_timeout": 30}
    return {}


def get_engine() -> AsyncEngine:
    global _engine, _sessionmaker
    if _engine is None:
        database_url = get_database_url()
        _engine = create_async_engine(database_url, **_engine_options(database_url))
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)

        url = make_url(database_url)
        log.info(
            "db.connection.config",
            backend=url.get_backend_name(),
            host=url.host or "",
            database=url.database or "",
            driver=url.drivername,
        )
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if _sessionmaker is None:
        get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def create_schema() -> None:
    """Create all tables on the current engine (tests and local SQLite setups)."""
    from Lanforge import models as _models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the shared engine; the next ``get_engine`` builds a fresh one."""
    global _engine, _sessionmaker
    engine, _engine, _sessionmaker = _engine, None, None
    if engine is not None:
        await engine.dispose()


@contextlib.asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on any error."""
    async with get_sessionmaker()() as s:
        try:
            yield s
            await s.commit()
        except Exception:
            log.error("db.session.error", exc_info=True)
            await s.rollback()
            raise
