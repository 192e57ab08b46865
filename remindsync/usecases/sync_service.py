"""
Calendar sync: pulls remote feeds and merges their events into reminders.

Feeds are fetched concurrently; merging is done one source at a time under
a lock that is never held across a fetch. Failures are collected per
source so one bad feed does not stop the others.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from remindsync.config.settings import get_settings
from remindsync.domain.errors import DecodeError, StoreError, SyncError
from remindsync.domain.escalation import EscalationPolicy
from remindsync.domain.feed_source import CalendarEvent, RemoteFeedSource, SyncResult
from remindsync.domain.reminder import Reminder, SourceKind
from remindsync.ical.parser import parse
from remindsync.infrastructure.feed_fetcher import FeedFetcher, HttpFeedFetcher
from remindsync.infrastructure.scheduler import get_alert_scheduler
from remindsync.infrastructure.store import RecordStore
from remindsync.usecases.escalation_engine import EscalationEngine
from remindsync.utils.time import as_utc, split_local, utc_now

logger = logging.getLogger(__name__)

# Shared across service instances: ids of sources with a sync in progress
_in_flight: Set[str] = set()
_merge_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = weakref.WeakKeyDictionary()


def merge_lock() -> asyncio.Lock:
    """Lock serializing merges on the running event loop."""
    loop = asyncio.get_running_loop()
    lock = _merge_locks.get(loop)
    if lock is None:
        lock = _merge_locks[loop] = asyncio.Lock()
    return lock


def event_schedule(event: CalendarEvent) -> Tuple:
    """Local (date, time of day) for an event; time is None for all-day events."""
    if event.all_day:
        return as_utc(event.start).date(), None
    return split_local(event.start)


def decode_feed(body: bytes) -> str:
    """
    Decode feed bytes as UTF-8 text.

    Raises:
        DecodeError: if the bytes are not valid UTF-8
    """
    try:
        return body.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Could not parse calendar data: {e}") from e


class CalendarSyncService:
    """Service class for syncing remote calendar feeds."""

    def __init__(
        self,
        store: RecordStore,
        engine: EscalationEngine,
        fetcher: FeedFetcher,
        default_policy_name: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.engine = engine
        self.fetcher = fetcher
        self.default_policy_name = default_policy_name or get_settings().default_policy_name
        self.clock = clock
        self.last_error: Optional[str] = None

    def _now(self) -> datetime:
        return as_utc(self.clock())

    async def sync_all(
        self,
        sources: Optional[List[RemoteFeedSource]] = None,
        force: bool = False
    ) -> List[SyncResult]:
        """
        Sync every enabled source whose interval has elapsed.

        Args:
            sources: Sources to consider (defaults to all enabled sources)
            force: Ignore the resync interval

        Returns:
            One result per source that was due; an unexpected failure in one
            source is recorded as that source's error

        Raises:
            StoreError: if any source failed to persist, once every source has finished
        """
        if sources is None:
            sources = await self.store.find_enabled_sources()

        now = self._now()
        due = [s for s in sources if s.enabled and (force or s.is_due(now))]
        if not due:
            self.last_error = None
            return []

        outcomes = await asyncio.gather(
            *(self.sync_source(source) for source in due),
            return_exceptions=True
        )

        results = []
        store_errors = []
        for source, outcome in zip(due, outcomes):
            if isinstance(outcome, SyncResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            logger.error(f"Failed to sync {source.name!r}: {outcome}")
            if isinstance(outcome, StoreError):
                store_errors.append(outcome)
            results.append(SyncResult(source_id=source.id, source_name=source.name, error=str(outcome)))

        errors = [f"Failed to sync {r.source_name}: {r.error}" for r in results if r.error]
        self.last_error = "; ".join(errors) if errors else None
        if store_errors:
            raise store_errors[0]
        return results

    async def sync_source(self, source: RemoteFeedSource) -> SyncResult:
        """Fetch, parse and merge one source. Never raises for fetch or decode failures."""
        result = SyncResult(source_id=source.id, source_name=source.name)

        if not source.enabled:
            return result

        if source.id in _in_flight:
            logger.info(f"Sync of {source.name!r} already in progress, skipping")
            result.skipped_in_flight = True
            return result

        _in_flight.add(source.id)
        try:
            try:
                body = await self.fetcher.fetch(source.endpoint)
                events = parse(decode_feed(body))
            except SyncError as e:
                logger.error(f"Failed to sync {source.name!r}: {e}")
                result.error = str(e)
                self.last_error = f"Failed to sync {source.name}: {e}"
                return result

            async with merge_lock():
                await self._merge_events(source, events, result)
                source.last_synced_at = self._now()
                await self.store.save(source)
        finally:
            _in_flight.discard(source.id)

        logger.info(
            f"Synced {source.name!r}: {result.created} created, {result.updated} updated, "
            f"{result.unchanged} unchanged, {result.skipped} skipped"
        )
        return result

    async def _merge_events(
        self,
        source: RemoteFeedSource,
        events: List[CalendarEvent],
        result: SyncResult
    ) -> None:
        default_policy = await self.store.find_policy_by_name(self.default_policy_name)
        ignored = source.ignored_origin_keys
        seen: Dict[str, CalendarEvent] = {}

        for event in events:
            # A feed may list the same UID more than once; the last one wins
            seen[event.origin_key] = event

        for event in seen.values():
            if event.origin_key in ignored:
                result.skipped += 1
                continue

            existing = await self.store.find_by_origin_key(event.origin_key)

            if existing is None:
                await self._create_from_event(source, event, default_policy)
                result.created += 1
            elif existing.source_kind == SourceKind.LOCAL:
                result.skipped += 1
            elif self._apply_event(existing, event):
                await self.store.save(existing)
                result.updated += 1
            else:
                result.unchanged += 1

    def _apply_event(self, reminder: Reminder, event: CalendarEvent) -> bool:
        """
        Copy event content onto an existing remote reminder.

        State, cursor and scheduled alerts are left untouched. Returns
        False if nothing changed.
        """
        reminder_date, reminder_time = event_schedule(event)
        changes = {
            "title": event.title,
            "description": event.description,
            "reminder_date": reminder_date,
            "reminder_time": reminder_time,
            "recurrence_rule": event.recurrence_rule,
        }
        changed = False
        for attr, value in changes.items():
            if getattr(reminder, attr) != value:
                setattr(reminder, attr, value)
                changed = True

        if changed:
            reminder.touch()
        return changed

    async def _create_from_event(
        self,
        source: RemoteFeedSource,
        event: CalendarEvent,
        policy: Optional[EscalationPolicy]
    ) -> Reminder:
        reminder_date, reminder_time = event_schedule(event)
        reminder = Reminder(
            title=event.title,
            description=event.description,
            reminder_date=reminder_date,
            reminder_time=reminder_time,
            recurrence_rule=event.recurrence_rule,
            escalation_policy_id=policy.id if policy else None,
            source_kind=SourceKind.REMOTE,
            origin_key=event.origin_key,
            source_id=source.id,
        )
        self.store.add(reminder)

        if policy is not None and reminder.trigger_date > self._now():
            await self.engine.arm(reminder, policy)
        else:
            await self.store.save(reminder)

        logger.debug(f"Created reminder {reminder.id} from event {event.origin_key}")
        return reminder


def build_sync_service(store: RecordStore) -> CalendarSyncService:
    """Wire a sync service against the global alert scheduler and an HTTP fetcher."""
    engine = EscalationEngine(store, get_alert_scheduler())
    return CalendarSyncService(store, engine, HttpFeedFetcher())
