"""
APScheduler setup with persistent job store for escalation alerts.

Every alert instant is one DateTrigger job whose id starts with
"alert_{reminder_id}_", so all alerts owned by a reminder can be found
and cancelled by prefix.
"""

import logging
import uuid
from datetime import datetime
from typing import NamedTuple, Optional, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from remindsync.config.settings import get_settings
from remindsync.domain.errors import SchedulingError
from remindsync.domain.escalation import AlertKind
from remindsync.utils.time import as_utc

logger = logging.getLogger(__name__)
settings = get_settings()

ALERT_JOB_PREFIX = "alert_"
FEED_SYNC_JOB_ID = "feed_sync"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None
_alert_scheduler: Optional["APSchedulerAlertScheduler"] = None


class AlertTag(NamedTuple):
    """Identifies which escalation step an alert belongs to."""
    reminder_id: str
    step_index: int
    kind: AlertKind


class AlertScheduler(Protocol):
    """Future-fire scheduler with a fixed capacity."""

    async def schedule(self, owner_id: str, tag: AlertTag, at: datetime, payload: dict) -> str:
        """Schedule a payload to fire at an absolute time. Raises SchedulingError."""
        ...

    async def cancel_all(self, owner_id: str) -> int:
        """Cancel every outstanding item owned by owner_id. Returns how many were removed."""
        ...


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler

    if scheduler is None:
        # Use SQLite for persistent job storage
        jobstores = {
            'default': SQLAlchemyJobStore(url=settings.jobstore_url)
        }

        scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            timezone=settings.timezone
        )

    return scheduler


def get_alert_scheduler() -> "APSchedulerAlertScheduler":
    """Get the alert scheduler bound to the global APScheduler instance."""
    global _alert_scheduler

    if _alert_scheduler is None:
        _alert_scheduler = APSchedulerAlertScheduler(get_scheduler(), settings.scheduler_capacity)

    return _alert_scheduler


async def start_scheduler() -> None:
    """Start the scheduler."""
    sched = get_scheduler()
    if not sched.running:
        sched.start()
        logger.info("Scheduler started")


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global scheduler, _alert_scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
    scheduler = None
    _alert_scheduler = None


class APSchedulerAlertScheduler:
    """AlertScheduler backed by APScheduler date jobs."""

    def __init__(self, sched: AsyncIOScheduler, capacity: int):
        self.sched = sched
        self.capacity = capacity

    def _owned_job_ids(self, owner_id: Optional[str] = None) -> list:
        prefix = f"{ALERT_JOB_PREFIX}{owner_id}_" if owner_id else ALERT_JOB_PREFIX
        return [job.id for job in self.sched.get_jobs() if job.id.startswith(prefix)]

    def outstanding(self, owner_id: Optional[str] = None) -> int:
        """Number of alert jobs still waiting to fire."""
        return len(self._owned_job_ids(owner_id))

    async def schedule(self, owner_id: str, tag: AlertTag, at: datetime, payload: dict) -> str:
        if self.outstanding() >= self.capacity:
            raise SchedulingError(
                f"Alert capacity of {self.capacity} reached; "
                f"cannot schedule step {tag.step_index} of reminder {owner_id}"
            )

        job_id = f"{ALERT_JOB_PREFIX}{owner_id}_{tag.step_index}_{tag.kind.value}_{uuid.uuid4().hex[:12]}"

        try:
            self.sched.add_job(
                deliver_alert,
                trigger=DateTrigger(run_date=as_utc(at)),
                id=job_id,
                replace_existing=True,
                misfire_grace_time=None,
                kwargs={
                    'reminder_id': tag.reminder_id,
                    'step_index': tag.step_index,
                    'kind': tag.kind.value,
                    'title': payload.get('title', ''),
                    'description': payload.get('description'),
                }
            )
        except Exception as e:
            raise SchedulingError(f"Scheduler rejected alert {job_id}: {e}") from e

        logger.debug(f"Scheduled alert {job_id} for {at}")
        return job_id

    async def cancel_all(self, owner_id: str) -> int:
        removed = 0
        for job_id in self._owned_job_ids(owner_id):
            try:
                self.sched.remove_job(job_id)
                removed += 1
            except JobLookupError:
                logger.debug(f"Alert {job_id} fired before it could be cancelled")

        if removed:
            logger.info(f"Cancelled {removed} alerts for reminder {owner_id}")
        return removed


async def deliver_alert(
    reminder_id: str,
    step_index: int,
    kind: str,
    title: str,
    description: Optional[str] = None
) -> None:
    """
    Deliver one escalation alert.

    This function is called by the scheduler at the alert time. It hands a
    "fired" command to the reminder service, which advances the escalation
    cursor.
    """
    from remindsync.infrastructure.database import StoreSession
    from remindsync.usecases.reminder_service import AlertAction, AlertActionKind, build_reminder_service

    logger.info(f"Delivering {kind} alert for reminder {reminder_id} (step {step_index}): {title}")

    try:
        async with StoreSession() as store:
            service = build_reminder_service(store)
            await service.handle_alert_action(
                AlertAction(reminder_id=reminder_id, step_index=step_index, action=AlertActionKind.FIRED)
            )
    except Exception as e:
        logger.exception(f"Error recording fired alert for {reminder_id}: {e}")


def schedule_feed_sync(interval_minutes: int) -> None:
    """Register the periodic job that syncs due calendar feeds."""
    sched = get_scheduler()
    sched.add_job(
        run_feed_sync,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id=FEED_SYNC_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    logger.info(f"Feed sync scheduled every {interval_minutes} minutes")


async def run_feed_sync() -> None:
    """Sync every enabled feed source whose interval has elapsed."""
    from remindsync.infrastructure.database import StoreSession
    from remindsync.usecases.sync_service import build_sync_service

    try:
        async with StoreSession() as store:
            service = build_sync_service(store)
            results = await service.sync_all()
        if service.last_error:
            logger.warning(f"Feed sync finished with errors: {service.last_error}")
        else:
            logger.info(f"Feed sync finished for {len(results)} sources")
    except Exception as e:
        logger.exception(f"Feed sync failed: {e}")
