"""Utility helpers shared across modules."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def ensure_utc(dt: datetime) -> datetime:
    """Force a datetime into UTC without altering instant."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_timezone(dt: datetime, tz_name: str) -> datetime:
    """Render an instant in the named zone, falling back to UTC for unknown names."""
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = UTC
    utc = ensure_utc(dt)
    try:
        return utc.astimezone(zone)
    except OverflowError:
        return utc


def format_megabytes(size: int) -> str:
    """Byte count as a two-decimal MB string."""
    return f"{size / 1024 / 1024:.2f} MB"


def pause(stop_event: threading.Event | None, milliseconds: int) -> bool:
    """Sleep for the given time unless the event fires first.

    Returns True when the wait was cut short by the event.
    """
    if milliseconds <= 0:
        return bool(stop_event and stop_event.is_set())
    if stop_event is None:
        threading.Event().wait(milliseconds / 1000)
        return False
    return stop_event.wait(milliseconds / 1000)
