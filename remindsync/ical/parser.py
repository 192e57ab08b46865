"""
Line parser for iCalendar feeds.

Turns the text of a feed into CalendarEvent objects. Only VEVENT blocks
are read; an event missing UID, SUMMARY or a readable DTSTART is dropped
and parsing carries on with the next one.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from remindsync.domain.feed_source import CalendarEvent
from remindsync.ical.escaping import unescape

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")

DATETIME_FORMAT = "%Y%m%dT%H%M%S"
DATE_FORMAT = "%Y%m%d"
_DATE_VALUE = re.compile(r"\d{8}(T\d{6})?Z?")

REQUIRED_PROPERTIES = ("UID", "SUMMARY", "DTSTART")


def unfold_lines(text: str) -> Iterator[str]:
    """
    Join folded lines into logical lines.

    A physical line starting with a space or tab continues the previous
    logical line; its leading whitespace run is removed and the rest is
    appended with no separator.
    """
    current: Optional[str] = None

    for line in _LINE_BREAK.split(text):
        if line[:1] in (" ", "\t"):
            if current is not None:
                current += line.lstrip(" \t")
            continue

        if current is not None:
            yield current
        current = line

    if current is not None:
        yield current


def split_property(line: str) -> Tuple[str, str]:
    """
    Split a logical line into (key, value).

    The line is split on the first colon and parameters after ';' in the
    name part are discarded, so "DTSTART;VALUE=DATE:20240101" gives
    ("DTSTART", "20240101").
    """
    name, _, value = line.partition(":")
    key = name.split(";", 1)[0].strip().upper()
    return key, value


def parse_date(value: str) -> Optional[Tuple[datetime, bool]]:
    """
    Parse a DTSTART/DTEND value.

    Returns:
        (aware UTC datetime, has_time) or None if the value is not recognised
    """
    value = value.strip()
    # strptime alone accepts single-digit fields
    if not _DATE_VALUE.fullmatch(value):
        return None
    if value.endswith("Z"):
        value = value[:-1]

    try:
        return datetime.strptime(value, DATETIME_FORMAT).replace(tzinfo=timezone.utc), True
    except ValueError:
        pass

    try:
        return datetime.strptime(value, DATE_FORMAT).replace(tzinfo=timezone.utc), False
    except ValueError:
        return None


def build_event(properties: Dict[str, str]) -> Optional[CalendarEvent]:
    """Build an event from a property map, or None if required fields are missing."""
    missing = [key for key in REQUIRED_PROPERTIES if not properties.get(key)]
    if missing:
        logger.debug(f"Dropping event without {', '.join(missing)}")
        return None

    start = parse_date(properties["DTSTART"])
    if start is None:
        logger.debug(f"Dropping event {properties['UID']}: unreadable DTSTART {properties['DTSTART']!r}")
        return None

    end = parse_date(properties["DTEND"]) if properties.get("DTEND") else None
    description = properties.get("DESCRIPTION")

    return CalendarEvent(
        origin_key=properties["UID"],
        title=unescape(properties["SUMMARY"]),
        description=unescape(description) if description else None,
        start=start[0],
        end=end[0] if end else None,
        recurrence_rule=properties.get("RRULE") or None,
        all_day=not start[1],
    )


def iter_events(text: str) -> Iterator[CalendarEvent]:
    """
    Yield the events of a feed in document order.

    Properties of components nested inside an event (VALARM and the like)
    are not mixed into the event's own properties.
    """
    properties: Optional[Dict[str, str]] = None
    nested_depth = 0

    for line in unfold_lines(text):
        if not line.strip():
            continue

        key, value = split_property(line)
        marker = value.strip().upper()

        if key == "BEGIN" and marker == "VEVENT":
            properties = {}
            nested_depth = 0
            continue

        if properties is None:
            continue

        if key == "END" and marker == "VEVENT":
            event = build_event(properties)
            if event is not None:
                yield event
            properties = None
            continue

        if key == "BEGIN":
            nested_depth += 1
        elif key == "END":
            nested_depth = max(nested_depth - 1, 0)
        elif nested_depth == 0 and value:
            properties[key] = value


def parse(text: str) -> List[CalendarEvent]:
    """
    Parse the full text of a calendar feed.

    Args:
        text: Feed content

    Returns:
        List of parsed events (malformed events are skipped)
    """
    events = list(iter_events(text))
    logger.debug(f"Parsed {len(events)} calendar events")
    return events
