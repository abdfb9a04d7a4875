"""Epoch-seconds to civil time conversion shared by every chain resolver."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

DEFAULT_DISPLAY_UTC_OFFSET = timedelta(hours=5, minutes=30)


def display_timezone(offset: timedelta = DEFAULT_DISPLAY_UTC_OFFSET) -> timezone:
    """Fixed-offset timezone used to present resolved block times."""
    return timezone(offset)


def epoch_to_display_time(
    epoch_seconds: int | float,
    offset: timedelta = DEFAULT_DISPLAY_UTC_OFFSET,
) -> datetime:
    """Convert a block's epoch-seconds timestamp to an offset-aware datetime.

    The instant is preserved; only the rendering offset changes.

    Raises:
        ValueError: If ``epoch_seconds`` is negative.
    """
    if epoch_seconds < 0:
        raise ValueError("epoch_seconds must be >= 0")
    return datetime.fromtimestamp(epoch_seconds, tz=UTC).astimezone(display_timezone(offset))
