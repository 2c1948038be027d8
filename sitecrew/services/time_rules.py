"""
Time rules service.
Handles timezone conversions and work-day normalization.
"""
from datetime import date, datetime, time
from typing import Optional
import pytz
from ..config import settings


def resolve_timezone(timezone_str: Optional[str]):
    """Return a pytz timezone, falling back to TZ_DEFAULT, then UTC."""
    for candidate in (timezone_str, settings.tz_default):
        if not candidate:
            continue
        try:
            return pytz.timezone(candidate)
        except pytz.UnknownTimeZoneError:
            continue
    return pytz.UTC


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (as stored by SQLite) or convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str]) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (timezone-aware or naive)
        timezone_str: Timezone string (e.g., "Asia/Kolkata")

    Returns:
        Local datetime (timezone-aware)
    """
    return ensure_utc(utc_datetime).astimezone(resolve_timezone(timezone_str))


def local_to_utc(local_datetime: datetime, timezone_str: Optional[str]) -> datetime:
    """
    Convert local datetime to UTC.

    Args:
        local_datetime: Local datetime (naive)
        timezone_str: Timezone string

    Returns:
        UTC datetime (timezone-aware)
    """
    tz = resolve_timezone(timezone_str)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC)


def local_work_day(moment: datetime, timezone_str: Optional[str]) -> date:
    """Calendar day, in the project timezone, that contains the given instant."""
    return utc_to_local(moment, timezone_str).date()


def utc_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min).replace(tzinfo=pytz.UTC)


def normalize_attendance_date(moment: datetime, timezone_str: Optional[str]) -> datetime:
    """
    Attendance rows are keyed by the UTC midnight of the project-local work day.

    A check-in at 02:00 local time in Asia/Kolkata (20:30 UTC the previous day)
    still belongs to the local day, so the key is that day's 00:00 UTC.
    """
    return utc_midnight(local_work_day(moment, timezone_str))


def is_utc_midnight(dt: datetime) -> bool:
    value = ensure_utc(dt)
    return (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0)


def is_same_day(time1: datetime, time2: datetime, timezone_str: Optional[str]) -> bool:
    """
    Check if two times are on the same day in the given timezone.

    Args:
        time1: First time (UTC, timezone-aware or naive)
        time2: Second time (UTC, timezone-aware or naive)
        timezone_str: Timezone string to use for day comparison

    Returns:
        True if both times are on the same day
    """
    return local_work_day(time1, timezone_str) == local_work_day(time2, timezone_str)
