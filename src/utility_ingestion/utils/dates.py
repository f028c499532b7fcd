"""Timezone helpers for capture timestamps and calendar days."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def get_zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ``ValueError`` for unknown names."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tz_name}") from exc


def ensure_aware(moment: datetime, tz_name: str) -> datetime:
    """Attach *tz_name* to naive timestamps; aware ones are returned unchanged."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=get_zone(tz_name))
    return moment


def local_day(moment: datetime, tz_name: str) -> date:
    """Calendar day of *moment* in *tz_name*."""
    return ensure_aware(moment, tz_name).astimezone(get_zone(tz_name)).date()


def start_of_local_day(day: date, tz_name: str) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=get_zone(tz_name))


def iter_days(start: date, end: date):
    """Yield every day in ``[start, end]``."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
