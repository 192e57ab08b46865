"""
Escalation scheduling engine.

Turns an escalation policy applied to a reminder into concrete alert
instants, replaces them after a snooze, and drives the reminder through
its lifecycle:

    pending --arm--> active --snooze--> active (cursor frozen, alerts replaced)
    active --complete--> completed      active --ignore--> ignored

Every operation cancels the reminder's outstanding alerts before
submitting new ones, so at most one live alert set exists per reminder.
The engine keeps no state of its own; callers serialize work on any one
reminder.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, NamedTuple, Optional, Sequence

from remindsync.config.settings import get_settings
from remindsync.domain.errors import InvalidTransitionError, SchedulingError
from remindsync.domain.escalation import AlertKind, EscalationPolicy, EscalationStep
from remindsync.domain.reminder import Reminder, ReminderState
from remindsync.infrastructure.scheduler import AlertScheduler, AlertTag
from remindsync.infrastructure.store import RecordStore
from remindsync.utils.time import SnoozeOption, as_utc, get_local_tz, resolve_snooze, utc_now

logger = logging.getLogger(__name__)


class PlannedAlert(NamedTuple):
    """One concrete alert instant derived from a policy step."""
    step_index: int
    kind: AlertKind
    at: datetime


@dataclass
class ArmResult:
    """What an arm/re-arm call actually handed to the scheduler."""
    reminder_id: str
    scheduled: List[PlannedAlert] = field(default_factory=list)
    errors: List[SchedulingError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def schedule_map(self) -> dict:
        """Map of step index to the ordered instants scheduled for it."""
        mapping: dict = {}
        for alert in self.scheduled:
            mapping.setdefault(alert.step_index, []).append(alert.at)
        return mapping


def expand_step(
    step: EscalationStep,
    step_index: int,
    start: datetime,
    now: datetime,
    max_repeats: int
) -> List[PlannedAlert]:
    """
    Expand one step into alert instants.

    A step whose own instant is not strictly in the future yields nothing.
    Otherwise a plain step yields that instant and a repeating step yields
    start, start + interval, ... up to max_repeats instants.
    """
    if start <= now:
        return []

    if step.repeat_interval_minutes is None:
        return [PlannedAlert(step_index, step.kind, start)]

    interval = timedelta(minutes=step.repeat_interval_minutes)
    return [
        PlannedAlert(step_index, step.kind, start + n * interval)
        for n in range(max_repeats)
    ]


def plan_from_trigger(
    steps: Sequence[EscalationStep],
    trigger: datetime,
    start_index: int,
    now: datetime,
    max_repeats: int
) -> List[PlannedAlert]:
    """Alert instants for steps[start_index:], each offset from the trigger instant."""
    plan = []
    for index in range(max(start_index, 0), len(steps)):
        step = steps[index]
        step_at = trigger + timedelta(minutes=step.delay_minutes)
        plan.extend(expand_step(step, index, step_at, now, max_repeats))
    return plan


def plan_from_resume(
    steps: Sequence[EscalationStep],
    resume_at: datetime,
    cursor: int,
    now: datetime,
    max_repeats: int
) -> List[PlannedAlert]:
    """
    Alert instants after a snooze.

    The step at the cursor fires at resume_at; every later step keeps its
    delay relative to the cursor step, not to the original trigger.
    """
    if cursor < 0 or cursor >= len(steps):
        return []

    anchor = steps[cursor].delay_minutes
    plan = []
    for index in range(cursor, len(steps)):
        step = steps[index]
        step_at = resume_at + timedelta(minutes=step.delay_minutes - anchor)
        plan.extend(expand_step(step, index, step_at, now, max_repeats))
    return plan


class EscalationEngine:
    """Stateless escalation service; the store and scheduler are injected."""

    def __init__(
        self,
        store: RecordStore,
        scheduler: AlertScheduler,
        max_repeat_alerts: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.scheduler = scheduler
        self.max_repeat_alerts = (
            max_repeat_alerts if max_repeat_alerts is not None else get_settings().max_repeat_alerts
        )
        self.clock = clock

    def _now(self) -> datetime:
        return as_utc(self.clock())

    async def _resolve_policy(
        self,
        reminder: Reminder,
        policy: Optional[EscalationPolicy]
    ) -> Optional[EscalationPolicy]:
        if policy is not None:
            return policy
        return await self.store.get_policy(reminder.escalation_policy_id)

    async def _submit(self, reminder: Reminder, plan: List[PlannedAlert]) -> ArmResult:
        """Hand planned alerts to the scheduler one at a time, collecting rejections."""
        result = ArmResult(reminder_id=reminder.id)
        payload = {"title": reminder.title, "description": reminder.description}

        for alert in plan:
            tag = AlertTag(reminder.id, alert.step_index, alert.kind)
            try:
                await self.scheduler.schedule(reminder.id, tag, alert.at, payload)
            except SchedulingError as e:
                logger.warning(f"Could not schedule step {alert.step_index} of {reminder.id} at {alert.at}: {e}")
                result.errors.append(e)
                continue
            result.scheduled.append(alert)

        return result

    async def arm(self, reminder: Reminder, policy: EscalationPolicy) -> ArmResult:
        """
        Schedule the reminder's remaining steps and mark it active.

        Steps from current_step_index on are offset from the trigger date;
        instants not in the future are dropped, so a fully past schedule
        arms nothing but still activates the reminder. The cursor is reset
        to 0 afterwards.

        Raises:
            InvalidTransitionError: if the reminder is completed or ignored
            StoreError: if saving fails (scheduled alerts are kept)
        """
        if reminder.is_closed:
            raise InvalidTransitionError(f"Cannot arm {reminder.state.value} reminder {reminder.id}")

        await self.scheduler.cancel_all(reminder.id)

        plan = plan_from_trigger(
            policy.steps,
            reminder.trigger_date,
            reminder.current_step_index,
            self._now(),
            self.max_repeat_alerts,
        )
        result = await self._submit(reminder, plan)

        reminder.activate()
        reminder.snoozed_until = None
        await self.store.save(reminder)

        logger.info(
            f"Armed reminder {reminder.id} with policy {policy.name!r}: "
            f"{len(result.scheduled)} alerts scheduled, {len(result.errors)} rejected"
        )
        return result

    async def rearm_from_snooze(
        self,
        reminder: Reminder,
        resume_at: datetime,
        policy: Optional[EscalationPolicy] = None
    ) -> ArmResult:
        """
        Replace the reminder's alerts so escalation resumes at resume_at.

        The cursor step fires at resume_at and later steps keep their
        spacing relative to it. The cursor itself is not moved.
        """
        await self.scheduler.cancel_all(reminder.id)

        policy = await self._resolve_policy(reminder, policy)
        plan = []
        if policy is not None:
            plan = plan_from_resume(
                policy.steps,
                as_utc(resume_at),
                reminder.current_step_index,
                self._now(),
                self.max_repeat_alerts,
            )
        result = await self._submit(reminder, plan)

        reminder.resume_from_snooze()
        await self.store.save(reminder)

        logger.info(
            f"Re-armed reminder {reminder.id} from step {reminder.current_step_index} "
            f"at {resume_at}: {len(result.scheduled)} alerts scheduled"
        )
        return result

    async def snooze(
        self,
        reminder: Reminder,
        until: datetime,
        policy: Optional[EscalationPolicy] = None
    ) -> ArmResult:
        """
        Silence an active reminder until the given instant.

        Raises:
            InvalidTransitionError: if the reminder is not active
        """
        if reminder.state != ReminderState.ACTIVE:
            raise InvalidTransitionError(
                f"Only active reminders can be snoozed (reminder {reminder.id} is {reminder.state.value})"
            )

        await self.scheduler.cancel_all(reminder.id)
        reminder.snooze_until(until)
        await self.store.save(reminder)
        logger.info(f"Snoozed reminder {reminder.id} until {as_utc(until)}")

        return await self.rearm_from_snooze(reminder, until, policy)

    async def snooze_option(
        self,
        reminder: Reminder,
        option: SnoozeOption,
        policy: Optional[EscalationPolicy] = None
    ) -> ArmResult:
        """Snooze using a named option such as "until evening"."""
        until = resolve_snooze(option, self._now(), get_local_tz())
        return await self.snooze(reminder, until, policy)

    async def complete(self, reminder: Reminder) -> None:
        """Cancel outstanding alerts and mark the reminder completed."""
        await self.scheduler.cancel_all(reminder.id)
        if reminder.is_closed:
            logger.debug(f"Reminder {reminder.id} already {reminder.state.value}")
            return
        reminder.mark_completed()
        await self.store.save(reminder)
        logger.info(f"Completed reminder {reminder.id}")

    async def ignore(self, reminder: Reminder) -> None:
        """Cancel outstanding alerts and mark the reminder ignored."""
        await self.scheduler.cancel_all(reminder.id)
        if reminder.is_closed:
            logger.debug(f"Reminder {reminder.id} already {reminder.state.value}")
            return
        reminder.mark_ignored()
        await self.store.save(reminder)
        logger.info(f"Ignored reminder {reminder.id}")

    async def cancel(self, reminder: Reminder) -> int:
        """Cancel outstanding alerts without changing the reminder's state."""
        return await self.scheduler.cancel_all(reminder.id)

    async def advance_step(self, reminder: Reminder, step_index: int) -> bool:
        """
        Record that the alert for step_index fired.

        The cursor only moves forward; nothing is rescheduled.
        """
        if not reminder.advance_step(step_index):
            return False
        await self.store.save(reminder)
        logger.debug(f"Reminder {reminder.id} advanced to step {step_index}")
        return True
