"""
Database engine and session lifecycle.

One engine and session factory per process, created by init_db() at startup
and disposed by close_db(). Sessions handed out here commit on clean exit and
roll back on error.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from jobsync.config import Settings, get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        # Dispatchers hold connections across idle polls
        pool_pre_ping=True,
        echo=settings.log_level.upper() == "DEBUG",
    )


def get_engine() -> AsyncEngine:
    """Return the process engine, creating it from settings on first use."""
    global _engine
    if _engine is None:
        _engine = _create_engine(get_settings())
    return _engine


def get_test_engine(database_url: str) -> AsyncEngine:
    """
    Engine for tests and one-off scripts.

    NullPool keeps connections from outliving the event loop that opened them.
    """
    return create_async_engine(database_url, poolclass=NullPool)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory used by the API, the dispatcher and the reaper.

    expire_on_commit is off because claimed jobs are used after the claim
    transaction has committed.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db() -> None:
    """Create the process engine and session factory."""
    global _session_factory
    _session_factory = create_session_factory(get_engine())
    logger.info("Database initialized")


async def close_db() -> None:
    """Dispose the process engine."""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connections closed")


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Session scope for code outside request handling.

    Raises:
        RuntimeError: If init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with get_session_context() as session:
        yield session
