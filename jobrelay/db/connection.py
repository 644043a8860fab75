"""
Database engine and session handling.

One engine and one session factory per process. The API, the scheduler
tasks and the transport all open their sessions through this module, so a
test can point the whole package at another database with ``init_db``.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobrelay.config import get_settings

logger = logging.getLogger(__name__)

# SQLite serializes writers; wait for the lock instead of failing the tick
SQLITE_BUSY_TIMEOUT_SECONDS = 30

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    """Backend specific engine keyword arguments."""
    settings = get_settings()
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}}

    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Create an async engine.

    Args:
        database_url: Database URL. Defaults to the configured one.

    Returns:
        AsyncEngine: A new engine, not registered with the module.
    """
    settings = get_settings()
    database_url = database_url or settings.database_url
    return create_async_engine(
        database_url,
        echo=settings.log_level == "DEBUG",
        **_engine_options(database_url),
    )


def get_engine() -> AsyncEngine:
    """
    Get the process engine, creating it from settings on first use.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize the session factory.

    Called on API and scheduler startup.

    Args:
        engine: Engine to bind to instead of the configured one.
    """
    global _engine, _session_factory
    if engine is not None:
        _engine = engine
    _session_factory = async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("Database connection initialized", extra={"backend": _engine.dialect.name})


async def close_db() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the session factory.

    Raises:
        RuntimeError: If ``init_db`` has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Open a session that commits on success and rolls back on error.

    Every scheduler tick step and every stored worker response runs in one
    of these, so each is its own transaction.

    Yields:
        AsyncSession: An async database session.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency wrapping ``get_session_context``."""
    async with get_session_context() as session:
        yield session
