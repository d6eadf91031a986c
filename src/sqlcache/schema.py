"""
SQL Cache — Record Schema

Fixed column layout of the cache table and the encoding rules applied at the
storage boundary:

- Keys are bounded strings (MAX_KEY_LENGTH), checked before any network call
- Values are binary blobs; values below VALUE_SIZE_HINT_THRESHOLD are bound
  with an explicit length to help the backing store reuse cached query plans
- Sliding windows are stored as integer counts of 100 ns ticks
- Timestamps are stored as naive UTC and always handed back timezone-aware

Decoding happens in one place, the column types below, which normalize
whatever the driver returns (memoryview/bytearray, naive datetimes, ints).
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    LargeBinary,
    MetaData,
    Table,
    Unicode,
)
from sqlalchemy.engine import Dialect, Row
from sqlalchemy.sql.expression import BindParameter, literal
from sqlalchemy.types import TypeDecorator

from .errors import CacheValidationError, InvalidKeyError

MAX_KEY_LENGTH = 100
VALUE_SIZE_HINT_THRESHOLD = 8000

# One tick is 100 nanoseconds
TICKS_PER_MICROSECOND = 10


class Columns:
    """Physical column names of the cache table."""

    ID = "Id"
    VALUE = "Value"
    EXPIRES_AT_TIME = "ExpiresAtTime"
    SLIDING_EXPIRATION_IN_TICKS = "SlidingExpirationInTicks"
    ABSOLUTE_EXPIRATION = "AbsoluteExpiration"

    REQUIRED = (ID, VALUE, EXPIRES_AT_TIME, SLIDING_EXPIRATION_IN_TICKS, ABSOLUTE_EXPIRATION)


def timedelta_to_ticks(value: timedelta) -> int:
    """Convert a timedelta to 100 ns ticks."""
    return (value // timedelta(microseconds=1)) * TICKS_PER_MICROSECOND


def ticks_to_timedelta(ticks: int) -> timedelta:
    """Convert 100 ns ticks to a timedelta (sub-microsecond remainder is dropped)."""
    return timedelta(microseconds=int(ticks) // TICKS_PER_MICROSECOND)


class UTCDateTime(TypeDecorator[datetime]):
    """Timestamp stored as naive UTC, returned as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime cannot be stored; use a timezone-aware UTC value")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class SlidingTicks(TypeDecorator[timedelta]):
    """Sliding window stored as a BIGINT tick count."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: timedelta | None, dialect: Dialect) -> int | None:
        if value is None:
            return None
        return timedelta_to_ticks(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> timedelta | None:
        if value is None:
            return None
        return ticks_to_timedelta(value)


class CacheValue(TypeDecorator[bytes]):
    """Binary value; drivers returning memoryview/bytearray are normalized to bytes."""

    impl = LargeBinary
    cache_ok = True

    def process_result_value(self, value: Any, dialect: Dialect) -> bytes | None:
        if value is None:
            return None
        return bytes(value)


def build_cache_table(
    metadata: MetaData,
    table_name: str = "cache_items",
    schema_name: str | None = None,
) -> Table:
    """
    Define the cache table on ``metadata``.

    Column keys are snake_case; the physical names come from Columns.
    """
    return Table(
        table_name,
        metadata,
        Column(Columns.ID, Unicode(MAX_KEY_LENGTH), key="id", primary_key=True),
        Column(Columns.VALUE, CacheValue(), key="value", nullable=False),
        Column(Columns.EXPIRES_AT_TIME, UTCDateTime(), key="expires_at", nullable=False),
        Column(Columns.SLIDING_EXPIRATION_IN_TICKS, SlidingTicks(), key="sliding_expiration", nullable=True),
        Column(Columns.ABSOLUTE_EXPIRATION, UTCDateTime(), key="absolute_expiration", nullable=True),
        Index(f"ix_{table_name}_expires_at", "expires_at"),
        schema=schema_name,
    )


def validate_key(key: Any) -> str:
    """
    Reject keys that cannot be stored.

    Raises:
        InvalidKeyError: If key is not a non-empty string of at most MAX_KEY_LENGTH characters
    """
    if not isinstance(key, str) or not key or len(key) > MAX_KEY_LENGTH:
        raise InvalidKeyError(key, MAX_KEY_LENGTH)
    return key


def validate_value(value: Any) -> bytes:
    """
    Reject values that are not byte sequences.

    Raises:
        CacheValidationError: If value is None or not bytes-like
    """
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise CacheValidationError(
        "Cache value must be a byte sequence",
        details={"value_type": type(value).__name__},
    )


def value_bind(value: bytes) -> BindParameter[bytes]:
    """
    Bind a value with a size hint when it is below the threshold.

    The hint only affects how the statement is prepared, never what is stored.
    """
    if len(value) < VALUE_SIZE_HINT_THRESHOLD:
        return literal(value, CacheValue(VALUE_SIZE_HINT_THRESHOLD))
    return literal(value, CacheValue())


@dataclass(frozen=True)
class CacheRecord:
    """One row of the cache table."""

    key: str
    value: bytes
    expires_at: datetime
    sliding_expiration: timedelta | None = None
    absolute_expiration: datetime | None = None

    @classmethod
    def from_row(cls, row: Row[Any]) -> "CacheRecord":
        """Build a record from a row whose columns are labeled with the table's column keys."""
        mapping = row._mapping
        return cls(
            key=mapping["id"],
            value=mapping["value"],
            expires_at=mapping["expires_at"],
            sliding_expiration=mapping["sliding_expiration"],
            absolute_expiration=mapping["absolute_expiration"],
        )

    def is_expired(self, now: datetime) -> bool:
        """Logical expiry check, matching the read filter: expired once ``now`` reaches ``expires_at``."""
        return now >= self.expires_at
