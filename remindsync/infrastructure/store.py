"""
Record store for reminders, escalation policies and feed sources.

Thin query layer over an AsyncSession. Every commit goes through save(),
which rolls the session back and raises StoreError on failure.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from remindsync.domain.errors import StoreError
from remindsync.domain.escalation import EscalationPolicy, build_presets
from remindsync.domain.feed_source import RemoteFeedSource
from remindsync.domain.reminder import Reminder, ReminderState

logger = logging.getLogger(__name__)


class RecordStore:
    """Transactional record store with predicate queries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _scalars(self, statement) -> list:
        try:
            result = await self.session.execute(statement)
            return list(result.scalars().all())
        except (SQLAlchemyError, LookupError) as e:
            # LookupError: a stored enum value no longer matches a known member
            raise StoreError(f"Query failed: {e}") from e

    async def _first(self, statement):
        rows = await self._scalars(statement.limit(1))
        return rows[0] if rows else None

    # Writes

    def add(self, *records) -> None:
        self.session.add_all(records)

    async def save(self, *records) -> None:
        """
        Commit pending changes (and any records passed in).

        Raises:
            StoreError: if the commit fails; the session is rolled back
        """
        if records:
            self.session.add_all(records)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to save records: {e}")
            raise StoreError(f"Failed to save records: {e}") from e

    async def delete(self, record) -> None:
        try:
            await self.session.delete(record)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete record: {e}") from e
        await self.save()

    # Reminders

    async def get_reminder(self, reminder_id: str) -> Optional[Reminder]:
        return await self._first(select(Reminder).where(Reminder.id == reminder_id))

    async def list_reminders(
        self,
        states: Optional[Iterable[ReminderState]] = None
    ) -> List[Reminder]:
        statement = select(Reminder)
        if states is not None:
            statement = statement.where(Reminder.state.in_(list(states)))
        return await self._scalars(statement.order_by(Reminder.reminder_date, Reminder.reminder_time))

    async def find_by_origin_key(self, origin_key: str) -> Optional[Reminder]:
        """Find the reminder correlated with a remote event."""
        return await self._first(
            select(Reminder)
            .where(Reminder.origin_key == origin_key)
            .order_by(Reminder.created_at)
        )

    # Escalation policies

    async def get_policy(self, policy_id: Optional[str]) -> Optional[EscalationPolicy]:
        if policy_id is None:
            return None
        return await self._first(select(EscalationPolicy).where(EscalationPolicy.id == policy_id))

    async def find_policy_by_name(self, name: str) -> Optional[EscalationPolicy]:
        return await self._first(
            select(EscalationPolicy)
            .where(EscalationPolicy.name == name)
            .order_by(EscalationPolicy.is_preset.desc())
        )

    async def list_policies(self) -> List[EscalationPolicy]:
        return await self._scalars(
            select(EscalationPolicy).order_by(EscalationPolicy.is_preset.desc(), EscalationPolicy.name)
        )

    async def seed_presets(self) -> int:
        """
        Insert the canonical presets unless any preset already exists.

        Returns:
            Number of presets inserted
        """
        try:
            result = await self.session.execute(
                select(func.count()).select_from(EscalationPolicy).where(EscalationPolicy.is_preset.is_(True))
            )
        except SQLAlchemyError as e:
            raise StoreError(f"Query failed: {e}") from e

        if result.scalar_one() > 0:
            return 0

        presets = build_presets()
        await self.save(*presets)
        logger.info(f"Seeded {len(presets)} preset escalation policies")
        return len(presets)

    # Feed sources

    async def get_source(self, source_id: Optional[str]) -> Optional[RemoteFeedSource]:
        if source_id is None:
            return None
        return await self._first(select(RemoteFeedSource).where(RemoteFeedSource.id == source_id))

    async def list_sources(self) -> List[RemoteFeedSource]:
        return await self._scalars(select(RemoteFeedSource).order_by(RemoteFeedSource.name))

    async def find_enabled_sources(self) -> List[RemoteFeedSource]:
        return await self._scalars(
            select(RemoteFeedSource)
            .where(RemoteFeedSource.enabled.is_(True))
            .order_by(RemoteFeedSource.name)
        )
