"""
SQL Cache — Expiration Policy

Pure functions computing when a cache record expires. No I/O.

Every record carries a single authoritative ``expires_at``. It is derived at
write time from an optional sliding window and an optional absolute deadline,
and may be moved forward at read time when a sliding window is recorded.
The absolute deadline is a hard cap that no refresh ever crosses.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from .errors import InvalidExpirationConfigurationError

# Stored for records written without any expiration; such records never expire
MAX_EXPIRES_AT = datetime.max.replace(tzinfo=UTC)

# Largest sliding window whose 100 ns tick count fits a signed 64-bit column
MAX_SLIDING_EXPIRATION = timedelta(microseconds=(2**63 - 1) // 10)


def _require_aware(name: str, value: datetime) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidExpirationConfigurationError(
            f"{name} must be a timezone-aware datetime",
            details={"field": name, "value": value.isoformat()},
        )


def _require_positive(name: str, value: timedelta) -> None:
    if value <= timedelta(0):
        raise InvalidExpirationConfigurationError(
            f"{name} must be positive",
            details={"field": name, "value": value.total_seconds()},
        )


def _require_storable_window(value: timedelta) -> None:
    if value > MAX_SLIDING_EXPIRATION:
        raise InvalidExpirationConfigurationError(
            "sliding_expiration is too large to be stored",
            details={"field": "sliding_expiration", "value": value.total_seconds()},
        )


def _add_capped(now: datetime, delta: timedelta) -> datetime:
    """Return ``now + delta``, saturating at MAX_EXPIRES_AT."""
    if delta >= MAX_EXPIRES_AT - now:
        return MAX_EXPIRES_AT
    return now + delta


@dataclass(frozen=True)
class EntryOptions:
    """
    Expiration options supplied with a write.

    Attributes:
        sliding_expiration: Window that is re-applied from "now" on each read
        absolute_expiration: Fixed UTC deadline
        absolute_expiration_relative_to_now: Deadline expressed as an offset from the write time
    """

    sliding_expiration: timedelta | None = None
    absolute_expiration: datetime | None = None
    absolute_expiration_relative_to_now: timedelta | None = None

    def __post_init__(self) -> None:
        if self.sliding_expiration is not None:
            _require_positive("sliding_expiration", self.sliding_expiration)
            _require_storable_window(self.sliding_expiration)
        if self.absolute_expiration_relative_to_now is not None:
            _require_positive("absolute_expiration_relative_to_now", self.absolute_expiration_relative_to_now)
        if self.absolute_expiration is not None:
            _require_aware("absolute_expiration", self.absolute_expiration)

    @property
    def has_expiration(self) -> bool:
        """True if any expiration field is set."""
        return (
            self.sliding_expiration is not None
            or self.absolute_expiration is not None
            or self.absolute_expiration_relative_to_now is not None
        )


@dataclass(frozen=True)
class ExpirationInfo:
    """Normalized expiration fields persisted with a record."""

    expires_at: datetime
    sliding_expiration: timedelta | None
    absolute_expiration: datetime | None


def compute_write_expiration(
    now: datetime,
    sliding_expiration: timedelta | None = None,
    absolute_expiration: datetime | None = None,
    absolute_expiration_relative_to_now: timedelta | None = None,
) -> ExpirationInfo:
    """
    Compute the expiration fields stored by a write.

    A relative deadline takes precedence over an absolute one when both are
    given. With neither a sliding window nor a deadline the record is stored
    with MAX_EXPIRES_AT and never expires.
    Deadlines past the representable range saturate at MAX_EXPIRES_AT.

    Args:
        now: Current UTC time
        sliding_expiration: Optional sliding window
        absolute_expiration: Optional absolute UTC deadline
        absolute_expiration_relative_to_now: Optional deadline offset from ``now``

    Returns:
        ExpirationInfo with expires_at and the normalized sliding/absolute values

    Raises:
        InvalidExpirationConfigurationError: If the resolved deadline is not after ``now``
            or the sliding window cannot be stored
    """
    _require_aware("now", now)

    absolute: datetime | None = None
    if absolute_expiration_relative_to_now is not None:
        absolute = _add_capped(now, absolute_expiration_relative_to_now)
    elif absolute_expiration is not None:
        _require_aware("absolute_expiration", absolute_expiration)
        absolute = absolute_expiration.astimezone(UTC)

    if absolute is not None and absolute <= now:
        raise InvalidExpirationConfigurationError(
            "The absolute expiration value must be in the future.",
            details={"absolute_expiration": absolute.isoformat(), "now": now.isoformat()},
        )

    if sliding_expiration is not None:
        _require_storable_window(sliding_expiration)
        expires_at = _add_capped(now, sliding_expiration)
        if absolute is not None and expires_at > absolute:
            expires_at = absolute
    elif absolute is not None:
        expires_at = absolute
    else:
        expires_at = MAX_EXPIRES_AT

    return ExpirationInfo(
        expires_at=expires_at,
        sliding_expiration=sliding_expiration,
        absolute_expiration=absolute,
    )


def compute_write_expiration_for(now: datetime, options: EntryOptions) -> ExpirationInfo:
    """Convenience wrapper taking an EntryOptions."""
    return compute_write_expiration(
        now,
        sliding_expiration=options.sliding_expiration,
        absolute_expiration=options.absolute_expiration,
        absolute_expiration_relative_to_now=options.absolute_expiration_relative_to_now,
    )


def compute_read_refresh(
    now: datetime,
    current_expires_at: datetime,
    sliding_expiration: timedelta | None = None,
    absolute_expiration: datetime | None = None,
) -> datetime | None:
    """
    Compute the refreshed expiry for a record that was just read.

    Refresh rule: recompute ``now + sliding_expiration`` on every read, capped
    at the absolute deadline, and report it whenever it differs from the
    stored value. There is no minimum-delta threshold.

    Args:
        now: Current UTC time
        current_expires_at: expires_at as stored
        sliding_expiration: Sliding window recorded with the entry
        absolute_expiration: Absolute deadline recorded with the entry

    Returns:
        The new expires_at, or None when no write is needed
    """
    if sliding_expiration is None:
        return None

    candidate = _add_capped(now, sliding_expiration)
    if absolute_expiration is not None and candidate > absolute_expiration:
        candidate = absolute_expiration

    if candidate == current_expires_at:
        return None
    return candidate
