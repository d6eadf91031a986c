"""
SQL Cache — Database Manager

Owns the SQLAlchemy engines the cache talks to: an async engine for the
coroutine operations and a blocking engine for their ``*_sync`` twins.
Each cache operation checks out its own connection and returns it to the
pool on every exit path.
"""

from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager
from pathlib import Path

from sqlalchemy import Connection, Engine, MetaData, Table, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .config import CacheConfig
from .schema import build_cache_table


class CacheDatabase:
    """
    Engine and connection manager for the cache table.

    Provides:
    - Per-call async and blocking connections
    - Table definition bound to the configured schema/table name
    - Table provisioning for tests and local development
    - Graceful shutdown
    """

    def __init__(self, config: CacheConfig):
        """
        Initialize the database manager.

        Engines connect lazily; nothing touches the backing store here.

        Args:
            config: Cache configuration (URLs, schema and table name)
        """
        self.config = config
        self.metadata = MetaData()
        self.table: Table = build_cache_table(self.metadata, config.table_name, config.schema_name)

        self.engine: AsyncEngine = create_async_engine(config.database_url, echo=config.echo)
        self.sync_engine: Engine = create_engine(config.sync_database_url or config.database_url, echo=config.echo)

    @property
    def dialect_name(self) -> str:
        """Name of the backing store's SQL dialect (sqlite, postgresql, ...)."""
        return self.engine.dialect.name

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self.config.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).resolve().parent.mkdir(parents=True, exist_ok=True)

    async def create_table(self) -> None:
        """
        Create the cache table if it doesn't exist.

        Safe to call multiple times (idempotent).
        """
        self._ensure_sqlite_directory()
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)

    def create_table_sync(self) -> None:
        """Blocking variant of create_table()."""
        self._ensure_sqlite_directory()
        with self.sync_engine.begin() as conn:
            self.metadata.create_all(conn)

    async def drop_table(self) -> None:
        """Drop the cache table if it exists."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.drop_all)

    @asynccontextmanager
    async def connect(self) -> AsyncGenerator[AsyncConnection, None]:
        """Read-only connection; released on exit."""
        async with self.engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def begin(self) -> AsyncGenerator[AsyncConnection, None]:
        """Connection with a transaction committed on success, rolled back on error or cancellation."""
        async with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def connect_sync(self) -> Generator[Connection, None, None]:
        """Blocking variant of connect()."""
        with self.sync_engine.connect() as conn:
            yield conn

    @contextmanager
    def begin_sync(self) -> Generator[Connection, None, None]:
        """Blocking variant of begin()."""
        with self.sync_engine.begin() as conn:
            yield conn

    async def close(self) -> None:
        """Close database connections gracefully."""
        await self.engine.dispose()
        self.sync_engine.dispose()
