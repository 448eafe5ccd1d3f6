from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from odds_insight.config import Settings, settings as default_settings


def create_engine(cfg: Settings | None = None, url: str | None = None) -> AsyncEngine:
    """Build an async engine with explicit connection pooling.

    Notes
    -----
    - pool_pre_ping: Detects stale connections before using them
    - pool_size / max_overflow / pool_recycle only apply to server databases;
      SQLite URLs get the dialect's default pool.
    """
    cfg = cfg or default_settings
    url = url or cfg.database_url_async
    if url.startswith("sqlite"):
        return create_async_engine(url, echo_pool=cfg.debug)
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=cfg.db_pool_size,
        max_overflow=cfg.db_max_overflow,
        pool_recycle=cfg.db_pool_recycle,
        echo_pool=cfg.debug,
    )


def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Async context manager that yields a pooled session."""
    async with factory() as session:
        yield session
