"""
Async SQLAlchemy plumbing for the fax record store.

Every status signal is applied in its own short transaction, so the manager
hands out one session per unit of work and commits it on clean exit.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from faxrelay.shared.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for the fax record and webhook audit tables."""


class DatabaseManager:
    """Owns the async engine and the session factory built on it.

    Nothing is connected until the first session is requested.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self._url = make_url(database_url)
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def dialect(self) -> str:
        return self._url.get_backend_name()

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self._echo, "pool_pre_ping": True}
        if self.dialect != "sqlite":
            # Poll sweeps and webhooks share the pool; keep it small and bounded
            options.update(pool_size=5, max_overflow=10)
        return options

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self._url, **self._engine_options())
            logger.info(
                "Database engine created",
                extra={"dialect": self.dialect, "database": self._url.database},
            )
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            # Records stay readable after commit; status changes are re-read explicitly
            self._sessions = async_sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._sessions

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """One unit of work: commit on clean exit, roll back on any error."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            await session.commit()

    async def create_all(self) -> None:
        """Create the fax tables if they do not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
