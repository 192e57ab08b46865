"""
Reminder service for creating, editing and acting on reminders.

Alert actions (a fired alert, or the user tapping complete/ignore/snooze)
arrive as AlertAction commands and are handled here; nothing else
subscribes to them.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel, Field

from remindsync.config.settings import get_settings
from remindsync.domain.errors import NotFoundError, ValidationError
from remindsync.domain.escalation import EscalationPolicy, PolicyCreate, PolicyUpdate
from remindsync.domain.feed_source import FeedSourceCreate, RemoteFeedSource
from remindsync.domain.reminder import (
    Reminder,
    ReminderState,
    ReminderCreate,
    ReminderUpdate,
    SourceKind,
)
from remindsync.ical.serializer import serialize
from remindsync.infrastructure.scheduler import get_alert_scheduler
from remindsync.infrastructure.store import RecordStore
from remindsync.usecases.escalation_engine import ArmResult, EscalationEngine
from remindsync.utils.time import SnoozeOption, as_utc, format_local, utc_now

logger = logging.getLogger(__name__)


class AlertActionKind(str, Enum):
    """Things that can happen to a delivered alert."""
    FIRED = "fired"
    COMPLETE = "complete"
    IGNORE = "ignore"
    SNOOZE_1H = "snooze_1h"
    SNOOZE_3H = "snooze_3h"
    SNOOZE_EVENING = "snooze_evening"
    SNOOZE_TOMORROW = "snooze_tomorrow"


_SNOOZE_ACTIONS = {
    AlertActionKind.SNOOZE_1H: SnoozeOption.ONE_HOUR,
    AlertActionKind.SNOOZE_3H: SnoozeOption.THREE_HOURS,
    AlertActionKind.SNOOZE_EVENING: SnoozeOption.UNTIL_EVENING,
    AlertActionKind.SNOOZE_TOMORROW: SnoozeOption.UNTIL_TOMORROW,
}


class AlertAction(BaseModel):
    """Command handed over by the alert delivery side."""
    reminder_id: str
    step_index: int = Field(0, ge=0)
    action: AlertActionKind


class ReminderService:
    """Service class for reminder operations."""

    def __init__(
        self,
        store: RecordStore,
        engine: EscalationEngine,
        default_policy_name: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.engine = engine
        self.default_policy_name = default_policy_name or get_settings().default_policy_name
        self.clock = clock

    # Lookups

    async def get_reminder(self, reminder_id: str) -> Reminder:
        reminder = await self.store.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {reminder_id} not found")
        return reminder

    async def list_reminders(self, states: Optional[Iterable[ReminderState]] = None) -> List[Reminder]:
        return await self.store.list_reminders(states)

    async def get_policy(self, policy_id: str) -> EscalationPolicy:
        policy = await self.store.get_policy(policy_id)
        if policy is None:
            raise NotFoundError(f"Escalation policy {policy_id} not found")
        return policy

    async def _policy_or_default(self, policy_id: Optional[str]) -> Optional[EscalationPolicy]:
        if policy_id is not None:
            return await self.get_policy(policy_id)
        return await self.store.find_policy_by_name(self.default_policy_name)

    # Reminders

    async def create_reminder(self, data: ReminderCreate) -> Reminder:
        """
        Create a local reminder.

        A future reminder with a policy is armed right away; one whose
        trigger has already passed is activated without alerts.
        """
        policy = await self._policy_or_default(data.escalation_policy_id)

        reminder = Reminder(
            title=data.title,
            description=data.description,
            reminder_date=data.reminder_date,
            reminder_time=data.reminder_time,
            recurrence_rule=data.recurrence_rule,
            escalation_policy_id=policy.id if policy else None,
            source_kind=SourceKind.LOCAL,
        )
        self.store.add(reminder)

        if reminder.trigger_date > as_utc(self.clock()):
            if policy is not None:
                await self.engine.arm(reminder, policy)
            else:
                await self.store.save(reminder)
        else:
            reminder.activate()
            await self.store.save(reminder)

        logger.info(f"Created reminder: {reminder.id} - {reminder.title} ({format_local(reminder.trigger_date)})")
        return reminder

    async def update_reminder(self, reminder_id: str, data: ReminderUpdate) -> Reminder:
        """
        Edit a reminder that is not closed yet.

        Editing a reminder that came from a calendar feed detaches it: it
        becomes local and its origin key is added to the source's ignore
        list so later syncs leave it alone. An active reminder is re-armed
        from its first step.
        """
        reminder = await self.get_reminder(reminder_id)
        if reminder.is_closed:
            raise ValidationError(f"Reminder {reminder_id} is {reminder.state.value} and can no longer be edited")

        was_active = reminder.state == ReminderState.ACTIVE

        if data.title is not None:
            reminder.title = data.title
        if data.description is not None:
            reminder.description = data.description or None
        if data.reminder_date is not None:
            reminder.reminder_date = data.reminder_date
        if data.clear_time:
            reminder.reminder_time = None
        elif data.reminder_time is not None:
            reminder.reminder_time = data.reminder_time
        if data.recurrence_rule is not None:
            reminder.recurrence_rule = data.recurrence_rule or None
        if data.escalation_policy_id is not None:
            reminder.escalation_policy_id = (await self.get_policy(data.escalation_policy_id)).id
        reminder.touch()

        if reminder.source_kind == SourceKind.REMOTE:
            await self._detach_from_feed(reminder)

        if was_active:
            policy = await self.store.get_policy(reminder.escalation_policy_id)
            reminder.current_step_index = 0
            if policy is not None:
                await self.engine.arm(reminder, policy)
            else:
                await self.engine.cancel(reminder)
                await self.store.save(reminder)
        else:
            await self.store.save(reminder)

        logger.info(f"Updated reminder: {reminder.id} - {reminder.title}")
        return reminder

    async def _detach_from_feed(self, reminder: Reminder) -> None:
        reminder.source_kind = SourceKind.LOCAL
        source = await self.store.get_source(reminder.source_id)
        if source is not None and reminder.origin_key:
            source.mark_origin_ignored(reminder.origin_key)
            self.store.add(source)
        logger.info(f"Detached reminder {reminder.id} from feed (origin {reminder.origin_key})")

    async def delete_reminder(self, reminder_id: str) -> None:
        reminder = await self.get_reminder(reminder_id)
        await self.engine.cancel(reminder)
        await self.store.delete(reminder)
        logger.info(f"Deleted reminder: {reminder.title}")

    async def complete(self, reminder_id: str) -> Reminder:
        reminder = await self.get_reminder(reminder_id)
        await self.engine.complete(reminder)
        return reminder

    async def ignore(self, reminder_id: str) -> Reminder:
        reminder = await self.get_reminder(reminder_id)
        await self.engine.ignore(reminder)
        return reminder

    async def snooze(
        self,
        reminder_id: str,
        until: Optional[datetime] = None,
        option: Optional[SnoozeOption] = None
    ) -> ArmResult:
        """Snooze until an explicit instant or a named option."""
        reminder = await self.get_reminder(reminder_id)
        if until is not None:
            return await self.engine.snooze(reminder, until)
        if option is not None:
            return await self.engine.snooze_option(reminder, option)
        raise ValidationError("Snooze needs either an instant or a snooze option")

    async def handle_alert_action(self, command: AlertAction) -> Optional[Reminder]:
        """
        Handle a command from the alert delivery side.

        Returns:
            The affected reminder, or None when a fired alert refers to a
            reminder that no longer exists
        """
        if command.action == AlertActionKind.FIRED:
            reminder = await self.store.get_reminder(command.reminder_id)
            if reminder is None:
                logger.warning(f"Alert fired for unknown reminder {command.reminder_id}")
                return None
            await self.engine.advance_step(reminder, command.step_index)
            return reminder

        reminder = await self.get_reminder(command.reminder_id)

        if command.action == AlertActionKind.COMPLETE:
            await self.engine.complete(reminder)
        elif command.action == AlertActionKind.IGNORE:
            await self.engine.ignore(reminder)
        else:
            await self.engine.snooze_option(reminder, _SNOOZE_ACTIONS[command.action])

        logger.info(f"Handled {command.action.value} for reminder {reminder.id}")
        return reminder

    async def export_calendar(self, reminder_ids: Optional[Iterable[str]] = None) -> str:
        """Serialize the given reminders (or all of them) as a calendar document."""
        if reminder_ids is None:
            reminders = await self.store.list_reminders()
        else:
            reminders = [await self.get_reminder(reminder_id) for reminder_id in reminder_ids]
        return serialize(reminders, now=as_utc(self.clock()))

    # Escalation policies

    async def list_policies(self) -> List[EscalationPolicy]:
        return await self.store.list_policies()

    async def seed_presets(self) -> int:
        """Insert the four preset policies if no preset exists yet."""
        return await self.store.seed_presets()

    async def create_policy(self, data: PolicyCreate) -> EscalationPolicy:
        policy = EscalationPolicy(name=data.name, steps=data.steps, is_preset=False)
        await self.store.save(policy)
        logger.info(f"Created escalation policy {policy.name!r} with {len(data.steps)} steps")
        return policy

    async def update_policy(self, policy_id: str, data: PolicyUpdate) -> EscalationPolicy:
        """
        Edit a custom policy.

        Reminders already armed with this policy keep their scheduled alerts;
        the new steps apply the next time one of them is armed.
        """
        policy = await self.get_policy(policy_id)
        if policy.is_preset:
            raise ValidationError(f"Preset policy {policy.name!r} cannot be edited")

        if data.name is not None:
            policy.name = data.name
        if data.steps is not None:
            policy.steps = data.steps

        await self.store.save(policy)
        logger.info(f"Updated escalation policy {policy.name!r}")
        return policy

    # Feed sources

    async def list_sources(self) -> List[RemoteFeedSource]:
        return await self.store.list_sources()

    async def add_source(self, data: FeedSourceCreate) -> RemoteFeedSource:
        source = RemoteFeedSource(
            name=data.name,
            endpoint=data.endpoint,
            sync_interval_minutes=data.sync_interval_minutes,
            enabled=data.enabled,
        )
        await self.store.save(source)
        logger.info(f"Added feed source {source.name!r}")
        return source

    async def ignore_origin(self, source_id: str, origin_key: str) -> RemoteFeedSource:
        """Permanently take an event out of sync control."""
        source = await self.store.get_source(source_id)
        if source is None:
            raise NotFoundError(f"Feed source {source_id} not found")
        source.mark_origin_ignored(origin_key)
        await self.store.save(source)
        logger.info(f"Feed source {source.name!r} now ignores {origin_key}")
        return source


def build_reminder_service(store: RecordStore) -> ReminderService:
    """Wire a reminder service against the global alert scheduler."""
    engine = EscalationEngine(store, get_alert_scheduler())
    return ReminderService(store, engine)
