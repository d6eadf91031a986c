"""
SQL Cache — Clock

Source of the current UTC time. Every time-dependent decision in the cache
goes through a Clock so tests can substitute a deterministic one.
"""

from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Supplies the current time as a timezone-aware UTC datetime."""

    def utcnow(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def utcnow(self) -> datetime:
        return datetime.now(UTC)
