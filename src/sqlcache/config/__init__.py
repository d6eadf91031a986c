"""
SQL Cache — Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import load_config
from .schemas import CacheConfig, Environment, LogLevel, SqlCacheConfig

__all__ = [
    # Loader functions
    "load_config",
    # Main config
    "SqlCacheConfig",
    # Enums
    "Environment",
    "LogLevel",
    # Config sections
    "CacheConfig",
]
