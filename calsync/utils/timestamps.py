"""Timestamp helpers shared by the store and the provider boundary.

Everything is handled as timezone-aware UTC internally. The database stores
second-resolution ``YYYY-MM-DDTHH:MM:SSZ`` strings so that window predicates
can compare them lexicographically.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DB_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime(DB_FORMAT)


# Google's ``timeMin``/``timeMax`` take the storage format as is
to_rfc3339 = to_db_timestamp


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO-8601 strings (including a trailing ``Z``) into aware UTC."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def get_zone(name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to UTC."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def day_bounds(day: date, start_hour: int, end_hour: int, tz: Optional[str] = None) -> tuple[datetime, datetime]:
    """Working window for ``day`` in ``tz``, returned as aware UTC datetimes."""
    zone = get_zone(tz)
    start = datetime.combine(day, time(hour=start_hour), tzinfo=zone)
    if end_hour >= 24:
        end = datetime.combine(day + timedelta(days=1), time(0), tzinfo=zone)
    else:
        end = datetime.combine(day, time(hour=end_hour), tzinfo=zone)
    return ensure_utc(start), ensure_utc(end)
