"""
SQL Cache — Storage Operations

Translates the cache operations into statements against the cache table:
probe, get, set, delete, update_expiration and delete_expired (sweep).

Every operation exists as a coroutine and as a blocking ``*_sync`` twin.
The twins issue the same statements in the same order; the only difference
is whether the caller's thread waits on the round trip.

Read-then-extend is an advisory lazy refresh, not a transaction:
- get() reads the live row on one connection and releases it
- if the sliding window moves the deadline, update_expiration() runs on a
  second, independent connection
Two concurrent reads of one key may therefore write their refreshed
deadlines in either order. The stored deadline can end up slightly older
than the latest read would have produced (stale by at most the gap between
the two reads) or slightly later than a reader expected, but it never
exceeds the absolute deadline and the value column is never touched.
A row deleted or swept between the two round trips makes the refresh a no-op.
A refresh write that fails is logged; the value that was read is still returned.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any

from sqlalchemy import Row, inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from .clock import Clock, SystemClock
from .database import CacheDatabase
from .errors import SchemaUnavailableError, SqlCacheError, StorageUnavailableError
from .expiration import EntryOptions, ExpirationInfo, compute_read_refresh, compute_write_expiration_for
from .queries import CacheQueries, Upsert
from .schema import CacheRecord, validate_key, validate_value


class SqlOperations:
    """
    Storage operations for one cache table.

    Storage failures surface as StorageUnavailableError, except in
    delete_expired() and the advisory refresh write inside get(), which log
    them and carry on. Failed statements are never retried.
    """

    def __init__(
        self,
        database: CacheDatabase,
        clock: Clock | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Args:
            database: Engines and table definition
            clock: Time source (system clock by default)
            logger: Sink for sweep and refresh diagnostics (module logger by default)
        """
        self.database = database
        self.queries = CacheQueries(database.table)
        self.clock: Clock = clock or SystemClock()
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    # ------------ Helpers ------------

    @contextmanager
    def _storage_errors(self, operation: str, key: str | None = None) -> Iterator[None]:
        """Wrap backing-store failures; cache errors and cancellation pass through untouched."""
        try:
            yield
        except SqlCacheError:
            raise
        except SQLAlchemyError as e:
            details: dict[str, Any] = {"table": self.database.table.fullname, "error": str(e)}
            if key is not None:
                details["key"] = key
            raise StorageUnavailableError(operation, details) from e

    def _check_columns(self, conn: Connection) -> None:
        table = self.database.table
        try:
            missing = self.queries.missing_columns(inspect(conn))
        except NoSuchTableError as e:
            raise SchemaUnavailableError(
                f"Could not retrieve information of table '{table.fullname}'. "
                "Make sure you have the table set up and try again.",
                details={"table": table.fullname},
            ) from e
        if missing:
            raise SchemaUnavailableError(
                f"Table '{table.fullname}' is missing required columns: {', '.join(missing)}",
                details={"table": table.fullname, "missing_columns": missing},
            )

    def _refresh_for(self, now: datetime, row: Row[Any] | None) -> tuple[CacheRecord | None, datetime | None]:
        if row is None:
            return None, None
        record = CacheRecord.from_row(row)
        new_expires_at = compute_read_refresh(
            now,
            record.expires_at,
            sliding_expiration=record.sliding_expiration,
            absolute_expiration=record.absolute_expiration,
        )
        return record, new_expires_at

    def _prepare_set(self, key: str, value: Any, options: EntryOptions | None) -> tuple[Upsert, ExpirationInfo]:
        validate_key(key)
        payload = validate_value(value)
        info = compute_write_expiration_for(self.clock.utcnow(), options or EntryOptions())
        upsert = self.queries.set_cache_item(self.database.dialect_name, key, payload, info)
        return upsert, info

    async def _execute_upsert(self, conn: AsyncConnection, upsert: Upsert) -> None:
        result = await conn.execute(upsert.statement)
        if upsert.fallback_insert is None or result.rowcount > 0:
            return
        try:
            async with conn.begin_nested():
                await conn.execute(upsert.fallback_insert)
        except IntegrityError:
            # Another writer inserted the key after our UPDATE matched nothing
            await conn.execute(upsert.statement)

    def _execute_upsert_sync(self, conn: Connection, upsert: Upsert) -> None:
        result = conn.execute(upsert.statement)
        if upsert.fallback_insert is None or result.rowcount > 0:
            return
        try:
            with conn.begin_nested():
                conn.execute(upsert.fallback_insert)
        except IntegrityError:
            # Another writer inserted the key after our UPDATE matched nothing
            conn.execute(upsert.statement)

    def _log_refresh_failure(self, key: str, expires_at: datetime) -> None:
        self.logger.warning(
            "Failed to refresh cache item expiration; returning the value that was read",
            extra={"key": key, "expires_at": expires_at.isoformat()},
            exc_info=True,
        )

    def _log_sweep_failure(self, error: Exception, now: datetime) -> None:
        self.logger.error(
            "An error occurred while deleting expired cache items",
            extra={"table": self.database.table.fullname, "now": now.isoformat(), "error": str(error)},
            exc_info=True,
        )

    def _log_sweep_result(self, count: int) -> int:
        if count > 0:
            self.logger.info(
                f"Deleted {count} expired cache item(s)",
                extra={"table": self.database.table.fullname, "deleted": count},
            )
        return count

    # ------------ Async operations ------------

    async def probe(self) -> None:
        """
        Verify the cache table is reachable and has the expected columns.

        Raises:
            SchemaUnavailableError: Table missing or misshapen
            StorageUnavailableError: Backing store unreachable
        """
        with self._storage_errors("probe"):
            async with self.database.connect() as conn:
                await conn.run_sync(self._check_columns)

    async def get_record(self, key: str) -> CacheRecord | None:
        """
        Read a live record and lazily refresh its sliding deadline.

        Returns:
            The record (with the refreshed expires_at, if one was written), or None if absent or expired
        """
        validate_key(key)
        now = self.clock.utcnow()

        with self._storage_errors("get", key):
            async with self.database.connect() as conn:
                result = await conn.execute(self.queries.get_cache_item(key, now))
                row = result.first()

        record, new_expires_at = self._refresh_for(now, row)
        if record is None or new_expires_at is None:
            return record

        try:
            await self.update_expiration(key, new_expires_at)
        except StorageUnavailableError:
            self._log_refresh_failure(key, new_expires_at)
            return record
        return replace(record, expires_at=new_expires_at)

    async def get(self, key: str) -> bytes | None:
        """Return the value stored under key, or None if absent or logically expired."""
        record = await self.get_record(key)
        return record.value if record is not None else None

    async def set(self, key: str, value: bytes, options: EntryOptions | None = None) -> ExpirationInfo:
        """
        Insert or fully replace a record.

        Returns:
            The expiration fields that were stored
        """
        upsert, info = self._prepare_set(key, value, options)

        with self._storage_errors("set", key):
            async with self.database.begin() as conn:
                await self._execute_upsert(conn, upsert)

        return info

    async def delete(self, key: str) -> bool:
        """
        Remove a record. Deleting an absent key is not an error.

        Returns:
            True if a row was removed
        """
        validate_key(key)

        with self._storage_errors("delete", key):
            async with self.database.begin() as conn:
                result = await conn.execute(self.queries.delete_cache_item(key))
                deleted = result.rowcount > 0

        return deleted

    async def update_expiration(self, key: str, expires_at: datetime) -> bool:
        """
        Move only the expires_at of an existing record.

        Returns:
            True if a row was updated; False if it no longer exists
        """
        validate_key(key)

        with self._storage_errors("update_expiration", key):
            async with self.database.begin() as conn:
                result = await conn.execute(self.queries.update_cache_item_expiration(key, expires_at))
                updated = result.rowcount > 0

        if not updated:
            self.logger.debug("Expiration refresh skipped; row no longer exists", extra={"key": key})
        return updated

    async def delete_expired(self) -> int:
        """
        Sweep every record whose deadline has passed.

        Never raises for storage failures: they go to the logger and 0 is returned.

        Returns:
            Number of rows removed
        """
        now = self.clock.utcnow()
        try:
            async with self.database.begin() as conn:
                result = await conn.execute(self.queries.delete_expired_cache_items(now))
                count = result.rowcount
        except Exception as e:
            self._log_sweep_failure(e, now)
            return 0

        return self._log_sweep_result(count)

    # ------------ Blocking operations ------------

    def probe_sync(self) -> None:
        """Blocking variant of probe()."""
        with self._storage_errors("probe"):
            with self.database.connect_sync() as conn:
                self._check_columns(conn)

    def get_record_sync(self, key: str) -> CacheRecord | None:
        """Blocking variant of get_record()."""
        validate_key(key)
        now = self.clock.utcnow()

        with self._storage_errors("get", key):
            with self.database.connect_sync() as conn:
                row = conn.execute(self.queries.get_cache_item(key, now)).first()

        record, new_expires_at = self._refresh_for(now, row)
        if record is None or new_expires_at is None:
            return record

        try:
            self.update_expiration_sync(key, new_expires_at)
        except StorageUnavailableError:
            self._log_refresh_failure(key, new_expires_at)
            return record
        return replace(record, expires_at=new_expires_at)

    def get_sync(self, key: str) -> bytes | None:
        """Blocking variant of get()."""
        record = self.get_record_sync(key)
        return record.value if record is not None else None

    def set_sync(self, key: str, value: bytes, options: EntryOptions | None = None) -> ExpirationInfo:
        """Blocking variant of set()."""
        upsert, info = self._prepare_set(key, value, options)

        with self._storage_errors("set", key):
            with self.database.begin_sync() as conn:
                self._execute_upsert_sync(conn, upsert)

        return info

    def delete_sync(self, key: str) -> bool:
        """Blocking variant of delete()."""
        validate_key(key)

        with self._storage_errors("delete", key):
            with self.database.begin_sync() as conn:
                result = conn.execute(self.queries.delete_cache_item(key))
                deleted = result.rowcount > 0

        return deleted

    def update_expiration_sync(self, key: str, expires_at: datetime) -> bool:
        """Blocking variant of update_expiration()."""
        validate_key(key)

        with self._storage_errors("update_expiration", key):
            with self.database.begin_sync() as conn:
                result = conn.execute(self.queries.update_cache_item_expiration(key, expires_at))
                updated = result.rowcount > 0

        if not updated:
            self.logger.debug("Expiration refresh skipped; row no longer exists", extra={"key": key})
        return updated

    def delete_expired_sync(self) -> int:
        """Blocking variant of delete_expired()."""
        now = self.clock.utcnow()
        try:
            with self.database.begin_sync() as conn:
                result = conn.execute(self.queries.delete_expired_cache_items(now))
                count = result.rowcount
        except Exception as e:
            self._log_sweep_failure(e, now)
            return 0

        return self._log_sweep_result(count)
