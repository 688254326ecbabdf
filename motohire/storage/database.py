"""Async engine and session lifecycle for the reservation store."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from motohire.config.settings import Settings
from motohire.logging import get_logger
from motohire.storage.db_models import Base

logger = get_logger(__name__)


def engine_options(database_url: str, echo: bool = False) -> dict[str, Any]:
    """Engine keyword arguments for a database URL.

    An in-memory SQLite database exists per connection, so every session
    must share the single connection held by a StaticPool.
    """
    url = make_url(database_url)
    options: dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        return options

    options.update(pool_size=10, max_overflow=20, pool_pre_ping=True)
    return options


def masked_url(database_url: str) -> str:
    """Database URL with the password hidden, for logs."""
    return make_url(database_url).render_as_string(hide_password=True)


class Database:
    """Owns the engine; hands out sessions to repositories."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    async def connect(self) -> None:
        """Create the engine and session factory. Safe to call twice."""
        if self._engine is not None:
            return

        self._engine = create_async_engine(
            self.settings.database_url,
            **engine_options(
                self.settings.database_url, echo=self.settings.log_level == "DEBUG"
            ),
        )
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        logger.info("database_connected", url=masked_url(self.settings.database_url))

    async def disconnect(self) -> None:
        if self._engine is None:
            return

        await self._engine.dispose()
        self._engine = None
        self._session_factory = None

        logger.info("database_disconnected")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Session scoped to one unit of work.

        Repositories commit their own writes; anything left pending when
        the block exits is committed here, and rolled back on error.

        Example:
            async with db.session() as session:
                repo = PostgresReservationRepository(session)
                reservation = await repo.get_by_id(reservation_id)
        """
        if self._session_factory is None:
            raise RuntimeError("Database not connected. Call connect() first.")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                logger.warning("database_session_rolled_back", exc_info=True)
                raise

    async def create_tables(self) -> None:
        """Create the schema directly (tests and local demos; production uses Alembic)."""
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("database_tables_created", tables=sorted(Base.metadata.tables))

