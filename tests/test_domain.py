"""
Unit tests for domain models and the record store.
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import text

from remindsync.domain.errors import InvalidTransitionError, StoreError, ValidationError
from remindsync.domain.escalation import (
    PRESET_STEPS,
    AlertKind,
    EscalationPolicy,
    decode_steps,
    validate_steps,
)
from remindsync.domain.feed_source import RemoteFeedSource, decode_key_set
from remindsync.domain.reminder import Reminder, ReminderState

from conftest import NOW


class TestEscalationPolicy:
    """Tests for policy steps."""

    def test_steps_keep_caller_order(self):
        policy = EscalationPolicy(name="Custom", steps=[
            {"kind": "alarm", "delay_minutes": 30},
            {"kind": "push", "delay_minutes": 0},
        ])

        assert [step.delay_minutes for step in policy.steps] == [30, 0]
        assert policy.steps[0].kind == AlertKind.ALARM

    def test_negative_delay_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_steps([{"kind": "push", "delay_minutes": -1}])

    def test_zero_repeat_interval_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_steps([{"kind": "push", "delay_minutes": 0, "repeat_interval_minutes": 0}])

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            validate_steps([{"kind": "siren", "delay_minutes": 0}])

    def test_corrupt_stored_steps_fail_closed(self):
        with pytest.raises(ValidationError):
            decode_steps('[{"kind": "siren", "delay_minutes": 0}]')
        with pytest.raises(ValidationError):
            decode_steps("not json")

    def test_preset_shapes(self):
        standard = PRESET_STEPS["Standard"]

        assert [s.delay_minutes for s in standard] == [0, 60, 120, 150]
        assert standard[3].repeat_interval_minutes == 30
        assert PRESET_STEPS["Nuclear"][1].repeat_interval_minutes == 5


class TestReminderModel:
    """Tests for reminder lifecycle helpers."""

    def test_trigger_date_without_time_is_midnight(self):
        reminder = Reminder(title="Rent", reminder_date=date(2024, 3, 5))

        assert not reminder.has_time
        assert reminder.trigger_date == datetime(2024, 3, 5, tzinfo=timezone.utc)

    def test_trigger_date_with_time(self):
        reminder = Reminder(title="Call", reminder_date=date(2024, 3, 5), reminder_time=time(14, 15))

        assert reminder.trigger_date == datetime(2024, 3, 5, 14, 15, tzinfo=timezone.utc)

    def test_new_reminder_defaults(self):
        reminder = Reminder(title="Call", reminder_date=date(2024, 3, 5))

        assert reminder.state == ReminderState.PENDING
        assert reminder.current_step_index == 0
        assert reminder.id

    def test_activate_closed_reminder_is_rejected(self):
        reminder = Reminder(title="Call", reminder_date=date(2024, 3, 5))
        reminder.mark_ignored()

        with pytest.raises(InvalidTransitionError):
            reminder.activate()

    def test_advance_step_requires_active(self):
        reminder = Reminder(title="Call", reminder_date=date(2024, 3, 5))

        assert reminder.advance_step(1) is False
        assert reminder.current_step_index == 0


class TestFeedSource:
    """Tests for feed source bookkeeping."""

    def test_due_when_never_synced(self):
        assert RemoteFeedSource(name="a", endpoint="https://x").is_due(NOW)

    def test_due_after_interval(self):
        source = RemoteFeedSource(name="a", endpoint="https://x", sync_interval_minutes=30)
        source.last_synced_at = NOW - timedelta(minutes=30)

        assert source.is_due(NOW)

    def test_ignored_keys_are_stored_sorted(self):
        source = RemoteFeedSource(name="a", endpoint="https://x")
        source.mark_origin_ignored("b@x")
        source.mark_origin_ignored("a@x")

        assert source.ignored_origin_keys_json == '["a@x", "b@x"]'
        assert source.is_origin_ignored("a@x")

    def test_corrupt_key_set_fails_closed(self):
        with pytest.raises(ValidationError):
            decode_key_set('{"a": 1}')


class TestRecordStore:
    """Tests for RecordStore."""

    @pytest.mark.asyncio
    async def test_seed_presets(self, store):
        names = {policy.name for policy in await store.list_policies()}

        assert names == {"Gentle", "Standard", "Urgent", "Nuclear"}
        assert await store.seed_presets() == 0

    @pytest.mark.asyncio
    async def test_list_reminders_by_state(self, store):
        pending = Reminder(title="a", reminder_date=date(2024, 3, 1))
        done = Reminder(title="b", reminder_date=date(2024, 3, 2))
        done.mark_completed()
        await store.save(pending, done)

        result = await store.list_reminders([ReminderState.PENDING])

        assert [r.id for r in result] == [pending.id]

    @pytest.mark.asyncio
    async def test_unknown_stored_state_fails_closed(self, store, test_session):
        await test_session.execute(text(
            "INSERT INTO reminders (id, title, reminder_date, state, current_step_index, source_kind) "
            "VALUES ('bad', 'Corrupt', '2024-03-01', 'EXPLODED', 0, 'LOCAL')"
        ))
        await test_session.commit()

        with pytest.raises(StoreError):
            await store.list_reminders()
