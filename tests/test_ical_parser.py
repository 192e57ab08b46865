"""
Unit tests for the iCalendar line parser and text escaping.
"""

from datetime import datetime, timezone

import pytest

from remindsync.ical.escaping import escape, unescape
from remindsync.ical.parser import parse, parse_date, split_property, unfold_lines

UTC = timezone.utc

FEED = "\r\n".join([
    "BEGIN:VCALENDAR",
    "VERSION:2.0",
    "PRODID:-//Example Corp//Calendar//EN",
    "BEGIN:VEVENT",
    "UID:evt-1@example.com",
    "DTSTART:20240315T143000Z",
    "DTEND:20240315T153000Z",
    "SUMMARY:Dentist\\, then pharmacy",
    "DESCRIPTION:Bring insurance card\\nand ID",
    "RRULE:FREQ=MONTHLY;COUNT=3",
    "BEGIN:VALARM",
    "ACTION:DISPLAY",
    "DESCRIPTION:Alarm text",
    "END:VALARM",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "UID:evt-2@example.com",
    "DTSTART;VALUE=DATE:20240320",
    "SUMMARY:Rent due",
    "END:VEVENT",
    "BEGIN:VEVENT",
    "UID:evt-3@example.com",
    "DTSTART:20240321T090000Z",
    "END:VEVENT",
    "END:VCALENDAR",
])


class TestUnfolding:
    """Tests for line unfolding and property splitting."""

    def test_continuation_is_joined_without_separator(self):
        lines = list(unfold_lines("SUMMARY:Team\r\n  meeting\r\nUID:1"))

        assert lines == ["SUMMARY:Teammeeting", "UID:1"]

    def test_tab_continuation(self):
        assert list(unfold_lines("DESCRIPTION:ab\n\tcd")) == ["DESCRIPTION:abcd"]

    def test_mixed_line_endings(self):
        assert list(unfold_lines("A:1\rB:2\nC:3\r\nD:4")) == ["A:1", "B:2", "C:3", "D:4"]

    def test_split_property_drops_parameters(self):
        assert split_property("DTSTART;VALUE=DATE:20240101") == ("DTSTART", "20240101")

    def test_split_property_keeps_colons_in_value(self):
        assert split_property("description:See https://example.com") == ("DESCRIPTION", "See https://example.com")


class TestParseDate:
    """Tests for DTSTART value formats."""

    def test_utc_datetime(self):
        assert parse_date("20240315T143000Z") == (datetime(2024, 3, 15, 14, 30, tzinfo=UTC), True)

    def test_floating_datetime_is_read_as_utc(self):
        assert parse_date("20240315T143000") == (datetime(2024, 3, 15, 14, 30, tzinfo=UTC), True)

    def test_date_only(self):
        assert parse_date("20240320") == (datetime(2024, 3, 20, tzinfo=UTC), False)

    def test_unreadable_value(self):
        assert parse_date("next tuesday") is None

    def test_short_fields_are_rejected(self):
        assert parse_date("2024311T9000") is None
        assert parse_date("2024311") is None
        assert parse_date("20240315T1430Z") is None


class TestParse:
    """Tests for parsing whole feeds."""

    def test_parses_valid_events_in_order(self):
        events = parse(FEED)

        assert [event.origin_key for event in events] == ["evt-1@example.com", "evt-2@example.com"]

    def test_timed_event_fields(self):
        event = parse(FEED)[0]

        assert event.title == "Dentist, then pharmacy"
        assert event.description == "Bring insurance card\nand ID"
        assert event.start == datetime(2024, 3, 15, 14, 30, tzinfo=UTC)
        assert event.end == datetime(2024, 3, 15, 15, 30, tzinfo=UTC)
        assert event.recurrence_rule == "FREQ=MONTHLY;COUNT=3"
        assert event.all_day is False

    def test_nested_alarm_does_not_override_event(self):
        event = parse(FEED)[0]

        assert event.description != "Alarm text"

    def test_all_day_event(self):
        event = parse(FEED)[1]

        assert event.all_day is True
        assert event.start == datetime(2024, 3, 20, tzinfo=UTC)
        assert event.description is None

    def test_event_with_empty_summary_is_dropped(self):
        text = "BEGIN:VEVENT\nUID:x\nSUMMARY:\nDTSTART:20240101\nEND:VEVENT\n"

        assert parse(text) == []

    def test_event_with_bad_start_is_dropped(self):
        text = "BEGIN:VEVENT\nUID:x\nSUMMARY:Hi\nDTSTART:tomorrow\nEND:VEVENT\n"

        assert parse(text) == []

    def test_unterminated_event_is_ignored(self):
        text = "BEGIN:VEVENT\nUID:x\nSUMMARY:Hi\nDTSTART:20240101\n"

        assert parse(text) == []

    def test_folded_summary(self):
        text = "BEGIN:VEVENT\r\nUID:x\r\nSUMMARY:Quarterly\r\n  review\r\nDTSTART:20240101\r\nEND:VEVENT\r\n"

        assert parse(text)[0].title == "Quarterlyreview"

    def test_empty_feed(self):
        assert parse("") == []


class TestEscaping:
    """Tests for escape and unescape."""

    def test_escape(self):
        assert escape("a\\b;c,d\ne") == "a\\\\b\\;c\\,d\\ne"

    def test_unescape(self):
        assert unescape("a\\\\b\\;c\\,d\\ne\\Nf") == "a\\b;c,d\ne\nf"

    def test_unknown_sequence_is_kept(self):
        assert unescape("tab\\there") == "tab\\there"

    def test_round_trip_with_literal_backslash_n(self):
        text = "C:\\new folder; notes, more\nnext"

        assert unescape(escape(text)) == text

    @pytest.mark.parametrize("text", [
        "",
        "ends with \\",
        "\\",
        "\\n is not a newline",
        "\\\\;",
        ",;\n\\",
        ";;,,",
        "\\N",
        "\\\\n\\,",
        "line one\n\nline three\n",
    ])
    def test_round_trip(self, text):
        assert unescape(escape(text)) == text

    @pytest.mark.parametrize("text, expected", [
        ("Call mom\r\nthen dad", "Call mom\nthen dad"),
        ("a\rb", "a\nb"),
        ("\r\r\n\n", "\n\n\n"),
        ("ends with \\\r", "ends with \\\n"),
    ])
    def test_carriage_returns_become_newlines(self, text, expected):
        escaped = escape(text)

        assert "\r" not in escaped
        assert "\n" not in escaped
        assert unescape(escaped) == expected
