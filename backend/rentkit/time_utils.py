from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    return utcnow().date()


def parse_calendar_date(value) -> Optional[date]:
    """
    Normalize a calendar-day input to a datetime.date.

    Accepts:
    - None / "" -> None
    - date -> returned as-is
    - datetime -> allowed only at exactly UTC midnight
    - "YYYY-MM-DD"
    - ISO datetime string that is exactly UTC midnight ("2025-11-04T00:00:00Z")

    Raises ValueError for anything carrying a time-of-day component.
    No timezone conversion is performed: an offset other than UTC is rejected.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            if value.utcoffset() != timedelta(0):
                raise ValueError("date must be expressed in UTC")
            value = value.replace(tzinfo=None)
        if value.time() != datetime.min.time():
            raise ValueError("date must not carry a time of day")
        return value.date()

    if isinstance(value, date):
        return value

    if not isinstance(value, str):
        raise ValueError("date must be a YYYY-MM-DD string")

    s = value.strip()
    if not s:
        return None

    if len(s) == 10:
        return date.fromisoformat(s)

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return parse_calendar_date(datetime.fromisoformat(s))


def to_ymd(d: Optional[date]) -> Optional[str]:
    if d is None:
        return None
    return d.isoformat()


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end, both inclusive."""
    day = start
    while day <= end:
        yield day
        day += ONE_DAY


def day_count(start: date, end: date) -> int:
    """Number of day windows in the inclusive range."""
    return (end - start).days + 1


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
