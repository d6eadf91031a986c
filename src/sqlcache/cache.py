"""
SQL Cache — Distributed Cache

CacheInterface implementation backed by SqlOperations.

- Probes the cache table once, on first use (or explicitly via connect())
- Applies the configured default sliding expiration to writes without any
- Schedules an opportunistic sweep of expired items after an operation when
  the configured deletion interval has elapsed since the previous one; the
  sweep runs in the background and never delays or fails the caller

Example:
    config = CacheConfig(database_url="sqlite+aiosqlite:///./data/cache.db")
    cache = SqlDistributedCache(config)
    await cache.set("greeting", b"hello", EntryOptions(sliding_expiration=timedelta(minutes=5)))
    value = await cache.get("greeting")
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from .clock import Clock, SystemClock
from .config import CacheConfig
from .database import CacheDatabase
from .expiration import EntryOptions
from .interface import CacheInterface
from .operations import SqlOperations
from .schema import validate_key


class SqlDistributedCache(CacheInterface):
    """
    Distributed cache whose entries live in a relational table.

    Notes:
    - Values are stored as-is; serialization is the caller's concern.
    - Storage failures propagate as StorageUnavailableError; only the
      background sweep suppresses them.
    """

    def __init__(
        self,
        config: CacheConfig,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
        database: CacheDatabase | None = None,
    ) -> None:
        """
        Initialize the cache. Nothing touches the backing store until first use.

        Args:
            config: Cache configuration
            clock: Time source (system clock by default)
            logger: Log sink for this cache and its sweeps (module logger by default)
            database: Pre-built database manager (created from config when omitted)
        """
        self.config = config
        self.clock: Clock = clock or SystemClock()
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._owns_database = database is None
        self.database = database or CacheDatabase(config)
        self.operations = SqlOperations(self.database, clock=self.clock, logger=self.logger)

        self._connected = False
        self._connect_lock = asyncio.Lock()
        self._connect_sync_lock = threading.Lock()

        self._last_expiration_scan = self.clock.utcnow()
        self._scan_lock = threading.Lock()
        self._sweep_tasks: set[asyncio.Task[int]] = set()
        self._sweep_executor: ThreadPoolExecutor | None = None

        # Stats
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._deletes = 0
        self._sweeps = 0
        self._swept_items = 0

    # ------------ Startup ------------

    async def connect(self) -> None:
        """
        Probe the cache table once.

        Raises:
            SchemaUnavailableError: If the table is missing or misshapen
            StorageUnavailableError: If the backing store is unreachable
        """
        if self._connected:
            return
        async with self._connect_lock:
            if self._connected:
                return
            await self.operations.probe()
            self._connected = True
            self.logger.info(
                f"SQL cache connected to table '{self.database.table.fullname}'",
                extra={"table": self.database.table.fullname, "dialect": self.database.dialect_name},
            )

    def connect_sync(self) -> None:
        """Blocking variant of connect()."""
        if self._connected:
            return
        with self._connect_sync_lock:
            if self._connected:
                return
            self.operations.probe_sync()
            self._connected = True
            self.logger.info(
                f"SQL cache connected to table '{self.database.table.fullname}'",
                extra={"table": self.database.table.fullname, "dialect": self.database.dialect_name},
            )

    # ------------ Helpers ------------

    def _entry_options(self, options: EntryOptions | None) -> EntryOptions | None:
        """Fill in the default sliding expiration for writes that carry none."""
        default_sliding = self.config.default_sliding
        if default_sliding is None:
            return options
        if options is None or not options.has_expiration:
            return EntryOptions(sliding_expiration=default_sliding)
        return options

    def _record_lookup(self, value: bytes | None) -> bytes | None:
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    def _claim_expiration_scan(self) -> bool:
        """Return True (and restart the interval) if a sweep is due."""
        now = self.clock.utcnow()
        with self._scan_lock:
            if now - self._last_expiration_scan <= self.config.deletion_interval:
                return False
            self._last_expiration_scan = now
            self._sweeps += 1
            return True

    def _on_sweep_done(self, task: asyncio.Task[int]) -> None:
        self._sweep_tasks.discard(task)
        if not task.cancelled():
            self._swept_items += task.result()

    def _on_sync_sweep_done(self, future: Future[int]) -> None:
        if not future.cancelled():
            self._swept_items += future.result()

    def _scan_for_expired_items_if_required(self) -> None:
        if not self._claim_expiration_scan():
            return
        task = asyncio.create_task(self.operations.delete_expired())
        self._sweep_tasks.add(task)
        task.add_done_callback(self._on_sweep_done)

    def _scan_for_expired_items_if_required_sync(self) -> None:
        if not self._claim_expiration_scan():
            return
        if self._sweep_executor is None:
            self._sweep_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sqlcache-sweep")
        future = self._sweep_executor.submit(self.operations.delete_expired_sync)
        future.add_done_callback(self._on_sync_sweep_done)

    # ------------ Core Interface ------------

    async def get(self, key: str) -> bytes | None:
        """Retrieve a value by key, extending its sliding expiration."""
        validate_key(key)
        await self.connect()
        value = self._record_lookup(await self.operations.get(key))
        self._scan_for_expired_items_if_required()
        return value

    async def set(self, key: str, value: bytes, options: EntryOptions | None = None) -> None:
        """Store a value, replacing any existing entry and its expiration."""
        validate_key(key)
        await self.connect()
        await self.operations.set(key, value, self._entry_options(options))
        self._sets += 1
        self._scan_for_expired_items_if_required()

    async def refresh(self, key: str) -> None:
        """Extend an entry's sliding expiration without returning the value."""
        validate_key(key)
        await self.connect()
        await self.operations.get_record(key)
        self._scan_for_expired_items_if_required()

    async def delete(self, key: str) -> bool:
        """Delete a single key."""
        validate_key(key)
        await self.connect()
        deleted = await self.operations.delete(key)
        if deleted:
            self._deletes += 1
        self._scan_for_expired_items_if_required()
        return deleted

    def get_sync(self, key: str) -> bytes | None:
        """Blocking variant of get()."""
        validate_key(key)
        self.connect_sync()
        value = self._record_lookup(self.operations.get_sync(key))
        self._scan_for_expired_items_if_required_sync()
        return value

    def set_sync(self, key: str, value: bytes, options: EntryOptions | None = None) -> None:
        """Blocking variant of set()."""
        validate_key(key)
        self.connect_sync()
        self.operations.set_sync(key, value, self._entry_options(options))
        self._sets += 1
        self._scan_for_expired_items_if_required_sync()

    def refresh_sync(self, key: str) -> None:
        """Blocking variant of refresh()."""
        validate_key(key)
        self.connect_sync()
        self.operations.get_record_sync(key)
        self._scan_for_expired_items_if_required_sync()

    def delete_sync(self, key: str) -> bool:
        """Blocking variant of delete()."""
        validate_key(key)
        self.connect_sync()
        deleted = self.operations.delete_sync(key)
        if deleted:
            self._deletes += 1
        self._scan_for_expired_items_if_required_sync()
        return deleted

    async def wait_for_sweeps(self) -> None:
        """Wait until every background sweep started so far has finished."""
        if self._sweep_tasks:
            await asyncio.gather(*self._sweep_tasks)

    def wait_for_sweeps_sync(self) -> None:
        """Wait until every background sweep started by a blocking call has finished."""
        if self._sweep_executor is not None:
            self._sweep_executor.shutdown(wait=True)
            self._sweep_executor = None

    async def get_stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0

        return {
            "backend": "sql",
            "dialect": self.database.dialect_name,
            "table": self.database.table.fullname,
            "connected": self._connected,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(hit_rate, 2),
            "sets": self._sets,
            "deletes": self._deletes,
            "sweeps": self._sweeps,
            "swept_items": self._swept_items,
            "last_expiration_scan": self._last_expiration_scan.isoformat(),
        }

    async def close(self) -> None:
        """Finish pending sweeps and release connections."""
        await self.wait_for_sweeps()
        await asyncio.to_thread(self.wait_for_sweeps_sync)
        if self._owns_database:
            await self.database.close()
        self._connected = False
        self.logger.info(f"Closed SQL cache for table '{self.database.table.fullname}'")
