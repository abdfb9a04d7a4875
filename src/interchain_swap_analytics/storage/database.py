"""Database connection and session management.

This module provides the async engine, session factory, and schema helpers
for both stores. Each store gets its own ``DatabaseManager`` so the source
and analysis pools stay independent.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from interchain_swap_analytics.storage.models import Base, OrderAnalysisModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def _normalize_async_database_url(database_url: str) -> str:
    if database_url.startswith("postgresql://"):
        logger.warning(
            "Database URL uses sync dialect 'postgresql://'; using async driver 'postgresql+asyncpg://'."
        )
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_async_db_engine(
    database_url: str,
    *,
    query_timeout_seconds: float | None = None,
    **kwargs: Any,
) -> AsyncEngine:
    """Create an asynchronous SQLAlchemy engine.

    Args:
        database_url: Database connection URL (e.g., postgresql+asyncpg://...).
        query_timeout_seconds: Per-statement timeout, applied through the
            asyncpg ``command_timeout`` connect argument.
        **kwargs: Additional engine options.

    Returns:
        SQLAlchemy AsyncEngine instance.
    """
    url = _normalize_async_database_url(database_url)
    if query_timeout_seconds is not None and url.startswith("postgresql+asyncpg://"):
        connect_args = dict(kwargs.pop("connect_args", {}))
        connect_args.setdefault("command_timeout", query_timeout_seconds)
        kwargs["connect_args"] = connect_args
    return create_async_engine(url, **kwargs)


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an asynchronous session factory."""
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_async_db(engine: AsyncEngine) -> None:
    """Create the analysis-store schema if it does not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized (async)")


async def reset_analysis_table(engine: AsyncEngine) -> int:
    """Delete every row of ``order_analysis``.

    Administrative operation only; the steady-state pipeline never deletes.

    Returns:
        Number of rows removed.
    """
    async with engine.begin() as conn:
        result = await conn.execute(delete(OrderAnalysisModel))
    removed = int(result.rowcount or 0)
    logger.warning("Reset order_analysis: removed %d rows", removed)
    return removed


class DatabaseManager:
    """Manages the connection pool and sessions for one store."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        query_timeout_seconds: float | None = None,
        echo: bool = False,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: Database connection URL.
            pool_size: Connection pool size.
            max_overflow: Maximum overflow connections.
            query_timeout_seconds: Per-statement timeout (PostgreSQL only).
            echo: Echo SQL statements for debugging.
        """
        self.database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._query_timeout = query_timeout_seconds
        self._echo = echo

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the asynchronous engine."""
        if self._engine is None:
            pool_kwargs: dict[str, Any] = {}
            # SQLite (tests, local runs) keeps the dialect's default pool.
            if not self.database_url.startswith("sqlite"):
                pool_kwargs = {"pool_size": self._pool_size, "max_overflow": self._max_overflow}
            self._engine = create_async_db_engine(
                self.database_url,
                query_timeout_seconds=self._query_timeout,
                echo=self._echo,
                **pool_kwargs,
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Session factory handed to components that own their transactions."""
        if self._session_factory is None:
            self._session_factory = create_async_session_factory(self.engine)
        return self._session_factory

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get an asynchronous session as a context manager.

        Commits on clean exit and rolls back if the block raises.
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema_async(self) -> None:
        """Initialize database schema asynchronously."""
        await init_async_db(self.engine)

    async def dispose_async(self) -> None:
        """Dispose of all async database connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.info("Async database connections disposed")
