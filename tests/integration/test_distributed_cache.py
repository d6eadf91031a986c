"""
SQL Cache — Distributed Cache Integration Tests

Tests the SqlDistributedCache facade: one-time schema probe, default sliding
expiration, opportunistic background sweeps, stats and the batch helpers.
"""

from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from sqlcache.cache import SqlDistributedCache
from sqlcache.config import CacheConfig
from sqlcache.database import CacheDatabase
from sqlcache.errors import InvalidKeyError, SchemaUnavailableError, StorageUnavailableError
from sqlcache.expiration import EntryOptions
from sqlcache.interface import CacheInterface
from conftest import T0, FakeClock


async def stored_deadlines(database: CacheDatabase) -> dict[str, object]:
    """Map each physically present key to its stored expires_at."""
    c = database.table.c
    async with database.connect() as conn:
        rows = (await conn.execute(select(c.id.label("id"), c.expires_at.label("expires_at")))).all()
    return {row.id: row.expires_at for row in rows}


class TestSqlDistributedCache:
    """Test suite for SqlDistributedCache."""

    @pytest.fixture
    async def cache(
        self, cache_config: CacheConfig, database: CacheDatabase, clock: FakeClock
    ) -> AsyncGenerator[SqlDistributedCache, None]:
        """Cache over a provisioned table; the database fixture owns the engines."""
        cache = SqlDistributedCache(cache_config, clock=clock, database=database)
        yield cache
        await cache.close()

    async def test_implements_interface(self, cache: SqlDistributedCache) -> None:
        assert isinstance(cache, CacheInterface)

    async def test_set_and_get(self, cache: SqlDistributedCache) -> None:
        """Test basic set and get operations."""
        await cache.set("key1", b"value1", EntryOptions(sliding_expiration=timedelta(minutes=5)))

        assert await cache.get("key1") == b"value1"
        assert await cache.get("missing") is None

        stats = await cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 1
        assert stats["hit_rate"] == 50.0

    async def test_probe_runs_once(self, cache: SqlDistributedCache, monkeypatch: pytest.MonkeyPatch) -> None:
        probe = AsyncMock(wraps=cache.operations.probe)
        monkeypatch.setattr(cache.operations, "probe", probe)

        await cache.set("key1", b"v")
        await cache.get("key1")
        await cache.delete("key1")

        assert probe.await_count == 1
        assert (await cache.get_stats())["connected"] is True

    async def test_missing_table_reported_on_first_use(self, cache_config: CacheConfig, clock: FakeClock) -> None:
        cache = SqlDistributedCache(cache_config, clock=clock)
        try:
            with pytest.raises(SchemaUnavailableError):
                await cache.get("key1")
            assert (await cache.get_stats())["connected"] is False
        finally:
            await cache.close()

    async def test_unreachable_store(self, unreachable_config: CacheConfig, clock: FakeClock) -> None:
        cache = SqlDistributedCache(unreachable_config, clock=clock)
        try:
            with pytest.raises(StorageUnavailableError):
                await cache.set("key1", b"v")
        finally:
            await cache.close()

    async def test_invalid_key_rejected_before_connecting(
        self, unreachable_config: CacheConfig, clock: FakeClock
    ) -> None:
        cache = SqlDistributedCache(unreachable_config, clock=clock)
        try:
            with pytest.raises(InvalidKeyError):
                await cache.get("k" * 101)
            with pytest.raises(InvalidKeyError):
                await cache.delete("")
        finally:
            await cache.close()

    async def test_default_sliding_expiration(
        self, cache_config: CacheConfig, database: CacheDatabase, clock: FakeClock
    ) -> None:
        config = cache_config.model_copy(update={"default_sliding_expiration": 10.0})
        cache = SqlDistributedCache(config, clock=clock, database=database)

        await cache.set("defaulted", b"v")
        await cache.set("explicit", b"v", EntryOptions(absolute_expiration_relative_to_now=timedelta(minutes=5)))

        defaulted = await cache.operations.get_record("defaulted")
        explicit = await cache.operations.get_record("explicit")
        assert defaulted is not None and explicit is not None
        assert defaulted.sliding_expiration == timedelta(seconds=10)
        assert explicit.sliding_expiration is None

        clock.advance(seconds=11)
        assert await cache.get("defaulted") is None
        assert await cache.get("explicit") == b"v"
        await cache.close()

    async def test_refresh_extends_sliding_expiration(
        self, cache: SqlDistributedCache, database: CacheDatabase, clock: FakeClock
    ) -> None:
        await cache.set("key1", b"v", EntryOptions(sliding_expiration=timedelta(seconds=10)))

        clock.advance(seconds=5)
        await cache.refresh("key1")

        assert (await stored_deadlines(database))["key1"] == T0 + timedelta(seconds=15)
        # Refresh is not a lookup
        assert (await cache.get_stats())["hits"] == 0

    async def test_delete(self, cache: SqlDistributedCache) -> None:
        await cache.set("key1", b"v")

        assert await cache.delete("key1") is True
        assert await cache.delete("key1") is False
        assert (await cache.get_stats())["deletes"] == 1

    async def test_get_many_and_delete_many(self, cache: SqlDistributedCache) -> None:
        await cache.set("a", b"1")
        await cache.set("b", b"2")

        assert await cache.get_many(["a", "b", "c"]) == {"a": b"1", "b": b"2"}
        assert await cache.delete_many(["a", "b", "c"]) == 2
        assert await cache.get_many(["a", "b"]) == {}


class TestOpportunisticSweep:
    """Expired rows are reclaimed in the background once the interval elapses."""

    @pytest.fixture
    async def cache(
        self, cache_config: CacheConfig, database: CacheDatabase, clock: FakeClock
    ) -> AsyncGenerator[SqlDistributedCache, None]:
        cache = SqlDistributedCache(cache_config, clock=clock, database=database)
        yield cache
        await cache.close()

    async def test_no_sweep_before_interval(
        self, cache: SqlDistributedCache, database: CacheDatabase, clock: FakeClock
    ) -> None:
        await cache.set("short", b"v", EntryOptions(absolute_expiration_relative_to_now=timedelta(seconds=5)))

        clock.advance(seconds=30)
        assert await cache.get("short") is None
        await cache.wait_for_sweeps()

        assert (await cache.get_stats())["sweeps"] == 0
        assert "short" in await stored_deadlines(database)

    async def test_sweep_after_interval(
        self, cache: SqlDistributedCache, database: CacheDatabase, clock: FakeClock
    ) -> None:
        await cache.set("short", b"v", EntryOptions(absolute_expiration_relative_to_now=timedelta(seconds=5)))
        await cache.set("long", b"v", EntryOptions(absolute_expiration_relative_to_now=timedelta(minutes=5)))

        clock.advance(seconds=61)
        assert await cache.get("long") == b"v"
        await cache.wait_for_sweeps()

        stats = await cache.get_stats()
        assert stats["sweeps"] == 1
        assert stats["swept_items"] == 1
        assert stats["last_expiration_scan"] == (T0 + timedelta(seconds=61)).isoformat()
        assert set(await stored_deadlines(database)) == {"long"}

    async def test_interval_restarts_after_sweep(self, cache: SqlDistributedCache, clock: FakeClock) -> None:
        clock.advance(seconds=61)
        await cache.get("a")
        clock.advance(seconds=30)
        await cache.get("a")
        await cache.wait_for_sweeps()

        assert (await cache.get_stats())["sweeps"] == 1

    async def test_sweep_delegates_to_operations(
        self, cache: SqlDistributedCache, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        delete_expired = AsyncMock(return_value=0)
        monkeypatch.setattr(cache.operations, "delete_expired", delete_expired)

        clock.advance(seconds=61)
        assert await cache.get("a") is None
        await cache.wait_for_sweeps()

        delete_expired.assert_awaited_once()


class TestBlockingFacade:
    """Blocking twins of the facade operations."""

    @pytest.fixture
    def cache(
        self, cache_config: CacheConfig, sync_database: CacheDatabase, clock: FakeClock
    ) -> SqlDistributedCache:
        return SqlDistributedCache(cache_config, clock=clock, database=sync_database)

    async def test_set_get_delete(self, cache: SqlDistributedCache) -> None:
        cache.set_sync("key1", b"v", EntryOptions(sliding_expiration=timedelta(minutes=1)))

        assert cache.get_sync("key1") == b"v"
        assert cache.delete_sync("key1") is True
        assert cache.get_sync("key1") is None

        stats = await cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["deletes"] == 1

    async def test_refresh_sync(self, cache: SqlDistributedCache, clock: FakeClock) -> None:
        cache.set_sync("key1", b"v", EntryOptions(sliding_expiration=timedelta(seconds=10)))

        clock.advance(seconds=8)
        cache.refresh_sync("key1")
        clock.advance(seconds=8)

        assert cache.get_sync("key1") == b"v"

    async def test_background_sweep(self, cache: SqlDistributedCache, clock: FakeClock) -> None:
        cache.set_sync("short", b"v", EntryOptions(absolute_expiration_relative_to_now=timedelta(seconds=5)))

        clock.advance(seconds=61)
        cache.get_sync("other")
        cache.wait_for_sweeps_sync()

        stats = await cache.get_stats()
        assert stats["sweeps"] == 1
        assert stats["swept_items"] == 1
        assert cache.operations.delete_expired_sync() == 0
