"""
SQL Cache — Core Error Types

Defines the exception hierarchy for the SQL-backed distributed cache.
All exceptions inherit from SqlCacheError for consistent error handling.

Propagation rules:
- Validation errors (key, value, expiration) are raised before any storage call
- Storage errors wrap the underlying SQLAlchemy exception (``raise ... from e``)
- Sweep failures are never raised; they are logged by the operation itself
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for structured error responses."""

    # Input validation errors
    INVALID_KEY = "INVALID_KEY"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_EXPIRATION = "INVALID_EXPIRATION"

    # Storage errors
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    SCHEMA_UNAVAILABLE = "SCHEMA_UNAVAILABLE"

    # Configuration errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SqlCacheError(Exception):
    """Base exception for all SQL cache errors."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging and responses."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SqlCacheError):
    """Raised when configuration is invalid or missing."""

    error_code = ErrorCode.CONFIGURATION_ERROR


class CacheValidationError(SqlCacheError):
    """Raised when caller input is rejected before reaching storage."""

    error_code = ErrorCode.INVALID_VALUE


class InvalidKeyError(CacheValidationError):
    """Raised when a cache key is empty, not a string, or exceeds the length bound."""

    error_code = ErrorCode.INVALID_KEY

    def __init__(self, key: Any, max_length: int, details: dict[str, Any] | None = None):
        if not isinstance(key, str):
            message = f"Cache key must be a string, got {type(key).__name__}"
        elif not key:
            message = "Cache key must not be empty"
        else:
            message = f"Cache key length {len(key)} exceeds the maximum of {max_length} characters"
        error_details = details or {}
        error_details.update({"max_length": max_length})
        if isinstance(key, str):
            error_details["key_length"] = len(key)
        super().__init__(message, error_details)


class InvalidExpirationConfigurationError(CacheValidationError):
    """Raised when entry expiration options cannot produce a future deadline."""

    error_code = ErrorCode.INVALID_EXPIRATION


class StorageError(SqlCacheError):
    """Base exception for backing-store errors."""

    error_code = ErrorCode.STORAGE_UNAVAILABLE


class StorageUnavailableError(StorageError):
    """Raised when a session cannot be opened or a statement fails to execute."""

    def __init__(self, operation: str, details: dict[str, Any] | None = None):
        message = f"Storage unavailable during '{operation}'"
        error_details = details or {}
        error_details.setdefault("operation", operation)
        super().__init__(message, error_details)
        self.operation = operation


class SchemaUnavailableError(StorageError):
    """Raised when the cache table is missing or not shaped as expected."""

    error_code = ErrorCode.SCHEMA_UNAVAILABLE


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is transient and a caller-side retry may succeed.

    Nothing inside the cache retries; this is a hint for callers that
    implement their own retry policy.

    Args:
        error: Exception to check

    Returns:
        True if the error is a transient storage failure
    """
    if isinstance(error, SchemaUnavailableError):
        return False

    if isinstance(error, StorageUnavailableError):
        return True

    return False


def extract_error_code(error: Exception) -> ErrorCode:
    """
    Extract the appropriate ErrorCode from an exception.

    Args:
        error: Exception to categorize

    Returns:
        ErrorCode for the exception
    """
    if isinstance(error, SqlCacheError):
        return error.error_code

    return ErrorCode.INTERNAL_ERROR
