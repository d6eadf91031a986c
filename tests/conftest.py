"""
SQL Cache — Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
Every integration test gets its own SQLite file under tmp_path and a FakeClock,
so expiration behavior is deterministic.
"""

import os
from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from sqlcache.config import CacheConfig
from sqlcache.database import CacheDatabase
from sqlcache.operations import SqlOperations

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def utcnow(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic clock starting at T0."""
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Path of the SQLite file backing the test cache."""
    return tmp_path / "cache.db"


@pytest.fixture
def cache_config(db_path: Path) -> CacheConfig:
    """Cache configuration pointing at a per-test SQLite file."""
    return CacheConfig(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        table_name="cache_items",
        expired_items_deletion_interval=60,
    )


@pytest.fixture
def unreachable_config(tmp_path: Path) -> CacheConfig:
    """Configuration whose database file lives in a directory that doesn't exist."""
    return CacheConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'cache.db'}")


@pytest.fixture
async def database(cache_config: CacheConfig) -> AsyncGenerator[CacheDatabase, None]:
    """Database with the cache table provisioned."""
    db = CacheDatabase(cache_config)
    await db.create_table()
    yield db
    await db.close()


@pytest.fixture
def sync_database(cache_config: CacheConfig) -> Generator[CacheDatabase, None, None]:
    """Database with the cache table provisioned through the blocking engine."""
    db = CacheDatabase(cache_config)
    db.create_table_sync()
    yield db
    db.sync_engine.dispose()


@pytest.fixture
def operations(database: CacheDatabase, clock: FakeClock) -> SqlOperations:
    """Async-side storage operations on a fresh table."""
    return SqlOperations(database, clock=clock)


@pytest.fixture
def sync_operations(sync_database: CacheDatabase, clock: FakeClock) -> SqlOperations:
    """Blocking-side storage operations on a fresh table."""
    return SqlOperations(sync_database, clock=clock)


@pytest.fixture(autouse=True)
def reset_cache_factory() -> Generator[None, None, None]:
    """Reset cache factory after each test to prevent state leakage."""
    yield
    from sqlcache.factory import reset_cache_factory

    reset_cache_factory()
