"""
Async database connection handle — SQLite, PostgreSQL, MySQL.

Driver mapping:
  sqlite://      → sqlite+aiosqlite://       (requires aiosqlite)
  postgresql://  → postgresql+asyncpg://     (requires asyncpg)
  mysql://       → mysql+aiomysql://         (requires aiomysql)

The handle is created and owned by the BackendSelector; nothing else
keeps a reference to the engine.

Usage:
    handle = DatabaseHandle("sqlite:///./gym_membership.db")
    await handle.connect()
    await handle.open()
    async with handle.session() as db:    # commit on success, rollback on error
        result = await db.execute(...)
    await handle.dispose()
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from database.models import Base

logger = structlog.get_logger()

# URL prefix → module that must be importable for the async driver
_ASYNC_DRIVERS = {
    "sqlite+aiosqlite://": "aiosqlite",
    "postgresql+asyncpg://": "asyncpg",
    "mysql+aiomysql://": "aiomysql",
}


def _to_async_url(db_url: str) -> str:
    """Convert a sync database URL to its async driver equivalent."""
    replacements = [
        ("postgresql://", "postgresql+asyncpg://"),
        ("postgres://", "postgresql+asyncpg://"),
        ("mysql://", "mysql+aiomysql://"),
        ("mysql+pymysql://", "mysql+aiomysql://"),
        ("sqlite://", "sqlite+aiosqlite://"),
    ]
    for sync_prefix, async_prefix in replacements:
        if db_url.startswith(sync_prefix):
            return db_url.replace(sync_prefix, async_prefix, 1)
    # Already has async driver or unknown: return as-is
    return db_url


def required_driver(db_url: str) -> Optional[str]:
    """Module name of the async driver a URL needs, or None if unknown."""
    async_url = _to_async_url(db_url)
    for prefix, module in _ASYNC_DRIVERS.items():
        if async_url.startswith(prefix):
            return module
    return None


def sqlite_file_path(db_url: str) -> Optional[str]:
    """Filesystem path of a file-backed SQLite URL, None for memory/other URLs."""
    async_url = _to_async_url(db_url)
    prefix = "sqlite+aiosqlite:///"
    if not async_url.startswith(prefix):
        return None
    path = async_url[len(prefix):].split("?", 1)[0]
    if not path or path == ":memory:":
        return None
    return path


def _engine_kwargs(db_url: str, debug: bool = False) -> dict:
    """Return database-specific engine configuration."""
    base = {"echo": debug}

    if "sqlite" in db_url:
        # SQLite: no connection pooling needed
        return {**base, "connect_args": {"check_same_thread": False}}

    # PostgreSQL / MySQL: connection pool tuning
    return {
        **base,
        "pool_size": 5,
        "max_overflow": 5,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


class DatabaseHandle:
    """
    Live connection to the durable backend.

    connect() builds the engine, open() performs the first round-trip,
    is_open() re-checks liveness without raising.
    """

    def __init__(self, db_url: str, debug: bool = False):
        self.url = _to_async_url(db_url)
        self._debug = debug
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._opened = False

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database handle is not connected")
        return self._engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name if self._engine else ""

    async def connect(self) -> None:
        """Create the engine and session factory."""
        if self._engine is not None:
            return
        self._engine = create_async_engine(self.url, **_engine_kwargs(self.url, self._debug))
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_engine_created",
                    dialect=self._engine.dialect.name,
                    url=self.url.split("@")[-1] if "@" in self.url else self.url)

    async def open(self) -> None:
        """First round-trip to the engine; raises if it cannot be reached."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        self._opened = True

    async def is_open(self) -> bool:
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.debug("database_ping_failed", error=str(e))
            return False
        self._opened = True
        return True

    async def create_schema(self) -> list[str]:
        """Apply each table's create-if-absent statement independently."""
        created = []
        for table in Base.metadata.sorted_tables:
            async with self.engine.begin() as conn:
                await conn.run_sync(table.create, checkfirst=True)
            created.append(table.name)
        logger.info("database_schema_ready", dialect=self.dialect, tables=created)
        return created

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional async session scope."""
        if self._session_factory is None:
            raise RuntimeError("Database handle is not connected")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Dispose engine connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._opened = False
            logger.info("database_closed")
