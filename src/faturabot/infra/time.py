"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_epoch(value: int | float | str | None) -> datetime | None:
    """Convert a provider epoch timestamp (seconds or milliseconds) to UTC.

    Returns:
        Timezone-aware datetime, or None if value is missing or not numeric.
    """
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    # Millisecond timestamps are 13 digits long
    if number > 1e12:
        number = number / 1000
    try:
        return datetime.fromtimestamp(number, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
