"""
Time utilities for the local calendar.

Instants are handled as timezone-aware UTC datetimes. The configured local
timezone is only used to combine a calendar date with a time of day and to
resolve wall-clock snooze options such as "until 17:00".
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from remindsync.config.settings import get_settings

UTC = timezone.utc


class SnoozeOption(str, Enum):
    """Named relative snooze choices offered on an alert."""
    ONE_HOUR = "one_hour"
    THREE_HOURS = "three_hours"
    UNTIL_EVENING = "until_evening"  # 17:00 today, or tomorrow if already past
    UNTIL_TOMORROW = "until_tomorrow"  # 09:00 on the next calendar day

    @property
    def display_name(self) -> str:
        return _SNOOZE_LABELS[self]


_SNOOZE_LABELS = {
    SnoozeOption.ONE_HOUR: "1 hour",
    SnoozeOption.THREE_HOURS: "3 hours",
    SnoozeOption.UNTIL_EVENING: "Until 5:00 PM",
    SnoozeOption.UNTIL_TOMORROW: "Until tomorrow 9:00 AM",
}


def get_local_tz() -> ZoneInfo:
    """Get the configured local timezone."""
    return ZoneInfo(get_settings().timezone)


def utc_now() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive datetimes are assumed to already be UTC, which is how SQLite
    hands stored values back.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_local(dt: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """Convert an instant to the local timezone."""
    return as_utc(dt).astimezone(tz or get_local_tz())


def combine_local(
    day: date,
    time_of_day: Optional[time] = None,
    tz: Optional[ZoneInfo] = None
) -> datetime:
    """
    Combine a calendar date and optional time of day in the local calendar.

    Args:
        day: Calendar date
        time_of_day: Wall-clock time, or None for a date-only value (midnight)
        tz: Local timezone (defaults to the configured one)

    Returns:
        Aware UTC datetime
    """
    tz = tz or get_local_tz()
    wall = time_of_day.replace(tzinfo=None) if time_of_day else time(0, 0)
    return datetime.combine(day, wall, tzinfo=tz).astimezone(UTC)


def split_local(dt: datetime, tz: Optional[ZoneInfo] = None) -> tuple[date, time]:
    """Split an instant into local calendar date and time of day."""
    local = to_local(dt, tz)
    return local.date(), local.time().replace(tzinfo=None)


def _at_hour(day: date, hour: int, tz) -> datetime:
    return datetime.combine(day, time(hour, 0), tzinfo=tz)


def resolve_snooze(
    option: SnoozeOption,
    now: Optional[datetime] = None,
    tz: Optional[ZoneInfo] = None
) -> datetime:
    """
    Resolve a named snooze option into an absolute instant.

    Args:
        option: Snooze choice
        now: Reference time (defaults to now); an aware value carries its own zone
        tz: Local timezone used when now is naive or omitted

    Returns:
        Aware UTC datetime
    """
    settings = get_settings()
    if now is None:
        now = utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz or get_local_tz())
    elif tz is not None:
        now = now.astimezone(tz)

    if option == SnoozeOption.ONE_HOUR:
        return as_utc(now + timedelta(hours=1))

    if option == SnoozeOption.THREE_HOURS:
        return as_utc(now + timedelta(hours=3))

    if option == SnoozeOption.UNTIL_EVENING:
        evening = _at_hour(now.date(), settings.evening_hour, now.tzinfo)
        if evening <= now:
            evening = _at_hour(now.date() + relativedelta(days=+1), settings.evening_hour, now.tzinfo)
        return as_utc(evening)

    if option == SnoozeOption.UNTIL_TOMORROW:
        return as_utc(_at_hour(now.date() + relativedelta(days=+1), settings.morning_hour, now.tzinfo))

    raise ValueError(f"Unknown snooze option: {option}")


def format_local(dt: datetime, include_date: bool = True) -> str:
    """
    Format an instant for display in the local timezone.

    Args:
        dt: Datetime to format
        include_date: Whether to include the date

    Returns:
        Formatted string
    """
    local = to_local(dt)

    if include_date:
        return local.strftime("%B %d, %Y at %I:%M %p %Z")
    else:
        return local.strftime("%I:%M %p %Z")
