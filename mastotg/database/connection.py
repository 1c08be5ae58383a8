"""
SQLite access for the forwarding ledger through SQLAlchemy 2.0 async.
Provides the SQLite engine, session management, and startup migrations.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from mastotg.config import settings

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite stores and returns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class DatabaseManager:
    """Owns the ledger engine and hands out sessions."""

    def __init__(self, database_url: Optional[str] = None):
        self._database_url = database_url
        self._engine: Optional[AsyncEngine] = None
        self._async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def database_url(self) -> str:
        return self._database_url or settings.database_url

    @property
    def engine(self) -> AsyncEngine:
        """Engine for the ledger file, created on first use."""
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, echo=False)
            event.listen(self._engine.sync_engine, "connect", _set_sqlite_pragmas)
        return self._engine

    @property
    def async_session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._async_session_factory is None:
            self._async_session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )
        return self._async_session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        async with self.async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> bool:
        """Run a trivial query; False if the database cannot be opened."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def close(self):
        """Dispose of the engine; the next use opens a new one."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._async_session_factory = None


# Default manager, bound to the configured database_path
db_manager = DatabaseManager()


async def init_database(manager: Optional[DatabaseManager] = None) -> int:
    """Check the connection and bring the schema up to date.

    Returns the schema version after migrating.
    """
    from .migrations import apply_migrations

    manager = manager or db_manager
    logger.info("Initializing database...")

    if not await manager.check_connection():
        raise RuntimeError(f"Cannot connect to database: {manager.database_url}")

    version = await apply_migrations(manager.engine)

    logger.info(f"Database initialization completed at schema version {version}")
    return version


async def close_database(manager: Optional[DatabaseManager] = None):
    """Close the manager's connections (the default manager when none is given)."""
    await (manager or db_manager).close()
    logger.info("Database connections closed")
