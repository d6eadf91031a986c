"""
SQL Cache — Configuration Loader

Loads and validates configuration from environment variables and .env files.
Every call returns a fresh SqlCacheConfig; callers hand it to the cache
explicitly instead of reading shared module state.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import SqlCacheConfig

logger = logging.getLogger(__name__)


def _optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


def load_config(env_file: str | None = None) -> SqlCacheConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in current directory)

    Returns:
        Validated SqlCacheConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    # Load .env file if exists
    if env_file:
        env_path = Path(env_file)
    else:
        env_path = Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        cache: dict[str, object] = {
            "database_url": os.getenv("SQLCACHE_DATABASE_URL", "sqlite+aiosqlite:///./data/cache.db"),
            "sync_database_url": os.getenv("SQLCACHE_SYNC_DATABASE_URL") or None,
            "schema_name": os.getenv("SQLCACHE_SCHEMA_NAME") or None,
            "table_name": os.getenv("SQLCACHE_TABLE_NAME", "cache_items"),
            "expired_items_deletion_interval": float(os.getenv("SQLCACHE_EXPIRED_ITEMS_DELETION_INTERVAL", "1800")),
            "default_sliding_expiration": _optional_float("SQLCACHE_DEFAULT_SLIDING_EXPIRATION"),
            "echo": os.getenv("SQLCACHE_ECHO", "false").lower() == "true",
        }
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid numeric value in environment: {e}",
            details={"error": str(e)},
        ) from e

    config_dict = {
        "environment": os.getenv("ENVIRONMENT", "development"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "cache": cache,
    }

    try:
        config = SqlCacheConfig(**config_dict)  # type: ignore[arg-type]
        logger.info(
            f"Configuration loaded successfully (environment: {config.environment})",
            extra={"environment": config.environment, "table_name": config.cache.table_name},
        )
        return config
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "config_dict_keys": list(config_dict.keys())},
            exc_info=True,
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e
