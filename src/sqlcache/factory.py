"""
SQL Cache — Cache Factory

Creates and tracks named cache instances.

Key points:
- Configuration, clock and logger are handed to each cache explicitly
- When no config is given, one is loaded from the environment for that call
- Instances are kept by name so shutdown code can close them all

Examples:
    from sqlcache.factory import create_cache

    cache = create_cache()

    from sqlcache.config import CacheConfig
    cfg = CacheConfig(database_url="sqlite+aiosqlite:///./data/test-cache.db", table_name="test_cache")
    test_cache = create_cache(cfg, name="test")
"""

from __future__ import annotations

import logging

from .cache import SqlDistributedCache
from .clock import Clock
from .config import CacheConfig, load_config
from .errors import ConfigurationError, SqlCacheError

logger = logging.getLogger(__name__)

# Registry of live cache instances by name
_cache_instances: dict[str, SqlDistributedCache] = {}


def create_cache(
    config: CacheConfig | None = None,
    name: str = "default",
    clock: Clock | None = None,
    cache_logger: logging.Logger | None = None,
) -> SqlDistributedCache:
    """
    Create a cache instance.

    Args:
        config: Cache configuration (loaded from the environment if not provided)
        name: Cache instance name (for multiple cache instances)
        clock: Time source handed to the cache
        cache_logger: Log sink handed to the cache

    Returns:
        Configured cache instance (existing one if ``name`` is already registered)

    Raises:
        ConfigurationError: If the configuration is invalid or the engines cannot be created
    """
    # Return existing instance if already created
    if name in _cache_instances:
        logger.debug("Returning existing cache instance: %s", name)
        return _cache_instances[name]

    if config is None:
        config = load_config().cache

    logger.info(
        "Creating cache instance '%s' for table '%s'",
        name,
        config.table_name,
        extra={"cache_name": name, "table_name": config.table_name},
    )

    try:
        cache = SqlDistributedCache(config, clock=clock, logger=cache_logger)
    except SqlCacheError:
        raise
    except Exception as e:
        logger.error(
            "Unexpected error creating cache instance '%s': %s",
            name,
            e,
            extra={"cache_name": name, "error": str(e)},
            exc_info=True,
        )
        raise ConfigurationError(
            f"Failed to create cache instance '{name}': {e}",
            details={"cache_name": name, "error": str(e)},
        ) from e

    _cache_instances[name] = cache
    return cache


def get_cache(name: str = "default") -> SqlDistributedCache:
    """
    Get an existing cache instance by name.

    If the instance doesn't exist, it is created from the environment configuration.

    Args:
        name: Cache instance name

    Returns:
        Cache instance
    """
    if name not in _cache_instances:
        logger.debug("Cache instance '%s' not found, creating new instance", name)
        return create_cache(name=name)

    return _cache_instances[name]


async def close_all_caches() -> None:
    """
    Close all cache instances and release resources.

    Should be called during graceful shutdown.
    """
    if not _cache_instances:
        logger.debug("No cache instances to close")
        return

    logger.info("Closing %d cache instance(s)...", len(_cache_instances))

    for name, cache in list(_cache_instances.items()):
        try:
            await cache.close()
            logger.info("Closed cache instance: %s", name)
        except Exception as e:
            logger.error(
                "Error closing cache instance '%s': %s",
                name,
                e,
                extra={"cache_name": name, "error": str(e)},
                exc_info=True,
            )

    _cache_instances.clear()
    logger.info("All cache instances closed")


def reset_cache_factory() -> None:
    """
    Clear all instance references without closing them.

    Warning: Only use this in testing contexts.
    """
    count = len(_cache_instances)
    _cache_instances.clear()
    logger.debug("Reset cache factory, cleared %d instance reference(s)", count)


def list_cache_instances() -> list[str]:
    """
    List all registered cache instance names.

    Returns:
        List of cache instance names
    """
    return list(_cache_instances.keys())
