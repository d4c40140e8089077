"""Time helpers. Everything stored is UTC; local time only for shift start times."""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.config import settings


def utcnow() -> datetime:
    """Server-side 'now' in UTC (aware)."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the database to aware UTC.
    Some backends (SQLite) hand back naive values; those are stored as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def slot_start_utc(day: date, slot) -> datetime:
    """UTC instant a shift starts on `day`, from the shop's local timezone."""
    local = datetime.combine(day, slot.start_time, tzinfo=ZoneInfo(settings.local_timezone))
    return local.astimezone(timezone.utc)
