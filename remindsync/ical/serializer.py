"""
iCalendar serializer: renders reminders as VEVENT blocks.
"""

import re
from datetime import datetime
from typing import Iterable, List, Optional

from remindsync.config.settings import get_settings
from remindsync.domain.reminder import Reminder
from remindsync.ical.escaping import escape
from remindsync.utils.time import as_utc, utc_now

CRLF = "\r\n"
MAX_LINE_OCTETS = 75

# One non-blank character plus any blanks after it, or a leading run of blanks
_FOLD_TOKEN = re.compile(r"[^ \t][ \t]*|[ \t]+")

UTC_DATETIME_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_FORMAT = "%Y%m%d"


def format_utc(dt: datetime) -> str:
    return as_utc(dt).strftime(UTC_DATETIME_FORMAT)


def fold_line(line: str) -> List[str]:
    """
    Fold a content line into physical lines of at most 75 octets.

    Continuation lines start with a single space. A break never lands in
    front of whitespace, because unfolding strips the whole leading
    whitespace run of a continuation; a run too long to fit is left on an
    over-long line instead.
    """
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return [line]

    parts = []
    current = ""
    size = 0
    limit = MAX_LINE_OCTETS
    for token in _FOLD_TOKEN.findall(line):
        width = len(token.encode("utf-8"))
        if current and size + width > limit:
            parts.append(current)
            current = ""
            size = 0
            limit = MAX_LINE_OCTETS - 1  # Room for the leading space
        current += token
        size += width
    parts.append(current)

    return [parts[0]] + [" " + part for part in parts[1:]]


def event_lines(reminder: Reminder, stamp: datetime) -> List[str]:
    """Content lines of one VEVENT block."""
    lines = [
        "BEGIN:VEVENT",
        f"UID:{reminder.id}",
        f"DTSTAMP:{format_utc(stamp)}",
        f"SUMMARY:{escape(reminder.title)}",
    ]

    if reminder.has_time:
        lines.append(f"DTSTART:{format_utc(reminder.trigger_date)}")
    else:
        lines.append(f"DTSTART;VALUE=DATE:{reminder.reminder_date.strftime(DATE_FORMAT)}")

    if reminder.description:
        lines.append(f"DESCRIPTION:{escape(reminder.description)}")

    if reminder.recurrence_rule:
        lines.append(f"RRULE:{reminder.recurrence_rule}")

    lines.append("END:VEVENT")
    return lines


def serialize(reminders: Iterable[Reminder], now: Optional[datetime] = None) -> str:
    """
    Render reminders as a VCALENDAR document.

    Args:
        reminders: Reminders to export (one VEVENT each)
        now: DTSTAMP value (defaults to now)

    Returns:
        Calendar text with CRLF line endings
    """
    stamp = now or utc_now()
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{get_settings().calendar_product_id}",
    ]

    for reminder in reminders:
        lines.extend(event_lines(reminder, stamp))

    lines.append("END:VCALENDAR")

    folded = [physical for line in lines for physical in fold_line(line)]
    return CRLF.join(folded)


def serialize_reminder(reminder: Reminder, now: Optional[datetime] = None) -> str:
    """Render a single reminder as a complete VCALENDAR document."""
    return serialize([reminder], now=now)
