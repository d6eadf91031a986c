"""
SQL Cache — Distributed cache backed by a relational table

Entries carry an absolute deadline and/or a sliding window that is refreshed
on access; expired rows are hidden from reads and reclaimed by sweeps.

Usage:
    from sqlcache import CacheConfig, EntryOptions, create_cache

    cache = create_cache(CacheConfig(database_url="sqlite+aiosqlite:///./data/cache.db"))
    await cache.set("key", b"value", EntryOptions(sliding_expiration=timedelta(minutes=20)))
    value = await cache.get("key")
"""

__version__ = "1.0.0"

from .cache import SqlDistributedCache
from .clock import Clock, SystemClock
from .config import CacheConfig, SqlCacheConfig, load_config
from .database import CacheDatabase
from .errors import (
    CacheValidationError,
    ConfigurationError,
    InvalidExpirationConfigurationError,
    InvalidKeyError,
    SchemaUnavailableError,
    SqlCacheError,
    StorageUnavailableError,
)
from .expiration import EntryOptions, ExpirationInfo, compute_read_refresh, compute_write_expiration
from .factory import close_all_caches, create_cache, get_cache, list_cache_instances, reset_cache_factory
from .interface import CacheInterface
from .operations import SqlOperations
from .schema import CacheRecord
from .sweeper import ExpiredItemsSweeper

__all__ = [
    # Cache
    "CacheInterface",
    "SqlDistributedCache",
    "SqlOperations",
    "ExpiredItemsSweeper",
    "CacheDatabase",
    "CacheRecord",
    # Factory functions
    "create_cache",
    "get_cache",
    "close_all_caches",
    "list_cache_instances",
    "reset_cache_factory",
    # Expiration
    "EntryOptions",
    "ExpirationInfo",
    "compute_write_expiration",
    "compute_read_refresh",
    # Time
    "Clock",
    "SystemClock",
    # Configuration
    "CacheConfig",
    "SqlCacheConfig",
    "load_config",
    # Errors
    "SqlCacheError",
    "ConfigurationError",
    "CacheValidationError",
    "InvalidKeyError",
    "InvalidExpirationConfigurationError",
    "StorageUnavailableError",
    "SchemaUnavailableError",
]
