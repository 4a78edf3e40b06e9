"""
Hour slot arithmetic.

A day is split into 24 slots keyed "00-01", "01-02", ... "23-00". The end hour
is taken mod 24, so the last slot of a day ends at midnight of the next day.
Windows are half-open: [hour_start, hour_end).
"""

import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

HOURS_PER_DAY = 24

_HOUR_RANGE_RE = re.compile(r"^(\d{2})-(\d{2})$")


def format_hour_range(hour: int) -> str:
    """Return the slot key for the hour starting at ``hour``."""
    if not 0 <= hour < HOURS_PER_DAY:
        raise ValueError(f"hour must be between 0 and 23, got {hour}")
    return f"{hour:02d}-{(hour + 1) % HOURS_PER_DAY:02d}"


def day_hour_ranges() -> list[str]:
    """All 24 slot keys of a day, in order."""
    return [format_hour_range(h) for h in range(HOURS_PER_DAY)]


def parse_hour_range(hour_range: str) -> int:
    """
    Parse a slot key and return its start hour.

    Raises:
        ValueError: If the key is malformed or not a one-hour slot
    """
    match = _HOUR_RANGE_RE.match(hour_range or "")
    if not match:
        raise ValueError(f"hour_range must look like 'HH-HH', got {hour_range!r}")

    start, end = int(match.group(1)), int(match.group(2))
    if start >= HOURS_PER_DAY or end != (start + 1) % HOURS_PER_DAY:
        raise ValueError(f"hour_range {hour_range!r} is not a valid one-hour slot")
    return start


def normalize_hour_range(value: str | int) -> str:
    """Accept either a start hour (14) or a slot key ("14-15")."""
    if isinstance(value, int):
        return format_hour_range(value)
    value = str(value).strip()
    if value.isdigit():
        return format_hour_range(int(value))
    parse_hour_range(value)
    return value


def parse_date(value: date | datetime | str) -> date:
    """Coerce a date, datetime or ISO "YYYY-MM-DD" string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def hour_window(job_date: date, hour_range: str, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """
    Compute the half-open window covered by a slot.

    Both ends are timezone-aware datetimes in ``tz``. The end is the start of
    the following local hour, so the "23-00" slot ends at next-day midnight.
    """
    start_hour = parse_hour_range(hour_range)
    hour_start = datetime.combine(job_date, time(hour=start_hour), tzinfo=tz)

    if start_hour == HOURS_PER_DAY - 1:
        hour_end = datetime.combine(job_date + timedelta(days=1), time(0), tzinfo=tz)
    else:
        hour_end = datetime.combine(job_date, time(hour=start_hour + 1), tzinfo=tz)

    return hour_start, hour_end


def previous_hour_slot(tz: ZoneInfo, now: datetime | None = None) -> tuple[date, str]:
    """
    Return the (date, hour_range) of the last fully elapsed hour in ``tz``.

    This is the window the hourly trigger processes.
    """
    if now is None:
        now = datetime.now(tz)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)

    previous = now - timedelta(hours=1)
    return previous.date(), format_hour_range(previous.hour)


def today(tz: ZoneInfo, now: datetime | None = None) -> date:
    """Today's date in ``tz``."""
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(tz).date()
