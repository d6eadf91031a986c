"""
SQL Cache — Configuration Schemas

Defines typed configuration models using Pydantic for validation and type safety.
All configuration is validated when the model is constructed and then passed
explicitly to the components that need it.
"""

from datetime import timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

# Async driver -> blocking driver used for the synchronous call variants
SYNC_DRIVER_MAP: dict[str, str] = {
    "sqlite+aiosqlite": "sqlite",
    "postgresql+asyncpg": "postgresql+psycopg2",
    "postgresql+psycopg": "postgresql+psycopg",
    "mysql+aiomysql": "mysql+pymysql",
    "mysql+asyncmy": "mysql+pymysql",
}


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheConfig(BaseModel):
    """SQL cache configuration."""

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/cache.db",
        description="Async SQLAlchemy URL of the backing store",
    )
    sync_database_url: str | None = Field(
        default=None,
        description="Blocking SQLAlchemy URL (derived from database_url when unset)",
    )
    schema_name: str | None = Field(default=None, description="Database schema holding the cache table")
    table_name: str = Field(default="cache_items", min_length=1, description="Cache table name")
    expired_items_deletion_interval: float = Field(
        default=1800.0,
        gt=0,
        description="Minimum seconds between opportunistic sweeps of expired items",
    )
    default_sliding_expiration: float | None = Field(
        default=None,
        gt=0,
        description="Sliding window in seconds applied to writes without any expiration (None = never expire)",
    )
    echo: bool = Field(default=False, description="Log every SQL statement (SQLAlchemy echo)")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure the URL parses and names an async-capable driver."""
        try:
            url = make_url(v)
        except ArgumentError as e:
            raise ValueError(f"database_url is not a valid SQLAlchemy URL: {e}") from e
        if "+" not in url.drivername:
            raise ValueError("database_url must name an async driver, e.g. 'sqlite+aiosqlite://'")
        return v

    @field_validator("sync_database_url")
    @classmethod
    def derive_sync_database_url(cls, v: str | None, info: Any) -> str | None:
        """Derive the blocking URL from the async one when not given explicitly."""
        if v is not None:
            return v
        database_url = info.data.get("database_url")
        if not database_url:
            return None
        url = make_url(database_url)
        sync_driver = SYNC_DRIVER_MAP.get(url.drivername)
        if sync_driver is None:
            raise ValueError(
                f"Cannot derive a synchronous driver for '{url.drivername}'; set sync_database_url explicitly"
            )
        return url.set(drivername=sync_driver).render_as_string(hide_password=False)

    @property
    def deletion_interval(self) -> timedelta:
        """Interval between opportunistic sweeps as a timedelta."""
        return timedelta(seconds=self.expired_items_deletion_interval)

    @property
    def default_sliding(self) -> timedelta | None:
        """Default sliding window as a timedelta, if configured."""
        if self.default_sliding_expiration is None:
            return None
        return timedelta(seconds=self.default_sliding_expiration)

    # validate_default so the sync URL is derived even when omitted
    model_config = ConfigDict(validate_default=True)


class SqlCacheConfig(BaseModel):
    """Root configuration for the SQL cache."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    # Informational for the host application; the library never configures logging itself
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level for the host application")

    cache: CacheConfig = Field(default_factory=CacheConfig)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
