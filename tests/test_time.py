"""
Unit tests for time utilities.
"""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from remindsync.utils.time import SnoozeOption, as_utc, combine_local, resolve_snooze, split_local

UTC = timezone.utc
NEW_YORK = ZoneInfo("America/New_York")


class TestResolveSnooze:
    """Tests for named snooze options."""

    def test_one_hour(self):
        now = datetime(2024, 3, 1, 14, 0, tzinfo=UTC)

        assert resolve_snooze(SnoozeOption.ONE_HOUR, now) == datetime(2024, 3, 1, 15, 0, tzinfo=UTC)

    def test_three_hours_crosses_midnight(self):
        now = datetime(2024, 3, 1, 23, 0, tzinfo=UTC)

        assert resolve_snooze(SnoozeOption.THREE_HOURS, now) == datetime(2024, 3, 2, 2, 0, tzinfo=UTC)

    def test_until_evening_before_five(self):
        now = datetime(2024, 3, 1, 14, 0, tzinfo=UTC)

        assert resolve_snooze(SnoozeOption.UNTIL_EVENING, now) == datetime(2024, 3, 1, 17, 0, tzinfo=UTC)

    def test_until_evening_after_five_rolls_to_tomorrow(self):
        now = datetime(2024, 3, 1, 18, 0, tzinfo=UTC)

        assert resolve_snooze(SnoozeOption.UNTIL_EVENING, now) == datetime(2024, 3, 2, 17, 0, tzinfo=UTC)

    def test_until_evening_at_exactly_five_rolls_to_tomorrow(self):
        now = datetime(2024, 3, 1, 17, 0, tzinfo=UTC)

        assert resolve_snooze(SnoozeOption.UNTIL_EVENING, now) == datetime(2024, 3, 2, 17, 0, tzinfo=UTC)

    def test_until_tomorrow(self):
        now = datetime(2024, 2, 29, 23, 30, tzinfo=UTC)

        assert resolve_snooze(SnoozeOption.UNTIL_TOMORROW, now) == datetime(2024, 3, 1, 9, 0, tzinfo=UTC)

    def test_until_evening_uses_local_wall_clock(self):
        """17:00 in New York is 22:00 UTC in winter."""
        now = datetime(2024, 3, 1, 19, 0, tzinfo=UTC)  # 14:00 in New York

        result = resolve_snooze(SnoozeOption.UNTIL_EVENING, now, NEW_YORK)

        assert result == datetime(2024, 3, 1, 22, 0, tzinfo=UTC)
        assert result.tzinfo == UTC

    def test_naive_now_is_read_in_local_zone(self):
        now = datetime(2024, 3, 1, 14, 0)

        result = resolve_snooze(SnoozeOption.UNTIL_EVENING, now, NEW_YORK)

        assert result == datetime(2024, 3, 1, 22, 0, tzinfo=UTC)


class TestCalendarHelpers:
    """Tests for combining and splitting local dates."""

    def test_combine_local_with_time(self):
        result = combine_local(date(2024, 3, 1), time(9, 0), ZoneInfo("Europe/Berlin"))

        assert result == datetime(2024, 3, 1, 8, 0, tzinfo=UTC)

    def test_combine_local_date_only_is_midnight(self):
        result = combine_local(date(2024, 3, 1), None, UTC)

        assert result == datetime(2024, 3, 1, 0, 0, tzinfo=UTC)

    def test_split_local(self):
        day, time_of_day = split_local(datetime(2024, 3, 2, 3, 30, tzinfo=UTC), NEW_YORK)

        assert day == date(2024, 3, 1)
        assert time_of_day == time(22, 30)

    def test_as_utc_treats_naive_as_utc(self):
        assert as_utc(datetime(2024, 3, 1, 12, 0)) == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        assert as_utc(None) is None
