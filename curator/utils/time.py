"""Time helpers with monotonic clocks."""

from __future__ import annotations

from datetime import UTC, datetime
import time as _time

__all__ = ["now_utc", "monotonic_ms", "as_utc"]


def now_utc() -> datetime:
    """Return the current UTC time with timezone information."""

    return datetime.now(UTC)


def monotonic_ms() -> int:
    """Return a monotonic timestamp in milliseconds."""

    return _time.monotonic_ns() // 1_000_000


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from SQLite."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
