"""Timezone and wall-clock helpers for slot arithmetic."""

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

logger = structlog.get_logger(__name__)

HHMM_PATTERN = re.compile(r"^\d{2}:\d{2}$")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def get_zone(name: str | None, fallback: str = "UTC") -> ZoneInfo:
    """Get a ZoneInfo timezone, falling back when the name is unknown."""
    if not name:
        return ZoneInfo(fallback)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", timezone=name, fallback=fallback)
        return ZoneInfo(fallback)


def is_same_timezone(first: str | None, second: str | None) -> bool:
    """Two timezone names refer to the same zone (or one is missing)."""
    if not first or not second:
        return True
    return get_zone(first).key == get_zone(second).key


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def day_of_week(value: date) -> int:
    """Day of week with Sunday as 0 and Saturday as 6."""
    return (value.weekday() + 1) % 7


def parse_hhmm(value: str) -> time:
    """Parse an ``HH:MM`` string into a time."""
    if not HHMM_PATTERN.match(value):
        raise ValueError(f"Time must be in HH:MM format: {value!r}")
    hours, minutes = (int(part) for part in value.split(":"))
    return time(hours, minutes)


def minutes_since_midnight(value: str) -> int:
    parsed = parse_hhmm(value)
    return parsed.hour * 60 + parsed.minute


def format_hhmm(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def slot_start_instant(local_date: date, start_time: str, timezone_name: str | None) -> datetime:
    """Aware UTC instant of a slot that starts at ``start_time`` on ``local_date``
    in the given timezone.
    """
    zone = get_zone(timezone_name)
    local = datetime.combine(local_date, parse_hhmm(start_time), tzinfo=zone)
    return local.astimezone(UTC)


def slot_bounds(
    local_date: date, start_time: str, duration: int, timezone_name: str | None
) -> tuple[datetime, datetime]:
    """UTC start and end instants of a slot."""
    start = slot_start_instant(local_date, start_time, timezone_name)
    return start, start + timedelta(minutes=duration)


def to_zone(value: datetime, timezone_name: str | None) -> datetime:
    """Convert an instant to wall-clock time in the named zone."""
    return ensure_utc(value).astimezone(get_zone(timezone_name))


def format_12h(value: datetime | time) -> str:
    """Format as ``9:00 AM``."""
    hour = value.hour % 12 or 12
    period = "PM" if value.hour >= 12 else "AM"
    return f"{hour}:{value.minute:02d} {period}"


def format_display_range(start: datetime | time, end: datetime | time) -> str:
    return f"{format_12h(start)} - {format_12h(end)}"


def iter_dates(start: date, end: date):
    """Yield each date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
