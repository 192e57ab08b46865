"""
Reminder domain model and schemas.
"""

import uuid
from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from sqlalchemy import Column, String, DateTime, Date, Time, Integer, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, Field

from remindsync.domain.errors import InvalidTransitionError
from remindsync.utils.time import as_utc, combine_local, utc_now

Base = declarative_base()


class ReminderState(str, Enum):
    """Reminder lifecycle state."""
    PENDING = "pending"  # Not yet triggered
    ACTIVE = "active"  # Escalation in progress
    COMPLETED = "completed"  # User marked complete
    IGNORED = "ignored"  # User dismissed without completing


TERMINAL_STATES = frozenset({ReminderState.COMPLETED, ReminderState.IGNORED})


class SourceKind(str, Enum):
    """Where a reminder came from."""
    LOCAL = "local"
    REMOTE = "remote"


class Reminder(Base):
    """SQLAlchemy model for reminders."""

    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    description = Column(String(4000), nullable=True)
    reminder_date = Column(Date, nullable=False)
    reminder_time = Column(Time, nullable=True)  # None means a date-only reminder
    recurrence_rule = Column(String(500), nullable=True)  # Opaque RRULE value
    state = Column(SQLEnum(ReminderState), nullable=False, default=ReminderState.PENDING)
    escalation_policy_id = Column(String(36), ForeignKey("escalation_policies.id"), nullable=True)
    current_step_index = Column(Integer, nullable=False, default=0)
    snoozed_until = Column(DateTime, nullable=True)
    source_kind = Column(SQLEnum(SourceKind), nullable=False, default=SourceKind.LOCAL)
    origin_key = Column(String(255), nullable=True, index=True)
    source_id = Column(String(36), ForeignKey("feed_sources.id"), nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    def __init__(self, **kwargs):
        kwargs.setdefault("id", str(uuid.uuid4()))
        kwargs.setdefault("created_at", utc_now())
        kwargs.setdefault("updated_at", kwargs["created_at"])
        kwargs.setdefault("state", ReminderState.PENDING)
        kwargs.setdefault("current_step_index", 0)
        kwargs.setdefault("source_kind", SourceKind.LOCAL)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Reminder(id={self.id}, title={self.title}, state={self.state})>"

    @property
    def has_time(self) -> bool:
        return self.reminder_time is not None

    @property
    def trigger_date(self) -> datetime:
        """Date plus optional time of day, combined in the local calendar (aware UTC)."""
        return combine_local(self.reminder_date, self.reminder_time)

    @property
    def is_closed(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def snoozed_until_utc(self) -> Optional[datetime]:
        return as_utc(self.snoozed_until)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def activate(self) -> None:
        """Enter Active and restart the escalation from the first step."""
        if self.is_closed:
            raise InvalidTransitionError(f"Reminder {self.id} is {self.state.value} and cannot be activated")
        self.state = ReminderState.ACTIVE
        self.current_step_index = 0
        self.touch()

    def mark_completed(self) -> None:
        if self.is_closed:
            return
        self.state = ReminderState.COMPLETED
        self.snoozed_until = None
        self.touch()

    def mark_ignored(self) -> None:
        if self.is_closed:
            return
        self.state = ReminderState.IGNORED
        self.snoozed_until = None
        self.touch()

    def snooze_until(self, until: datetime) -> None:
        if self.state != ReminderState.ACTIVE:
            raise InvalidTransitionError(f"Only active reminders can be snoozed (reminder {self.id} is {self.state.value})")
        self.snoozed_until = as_utc(until)
        self.touch()

    def resume_from_snooze(self) -> None:
        # The step cursor is left alone so escalation resumes where it stopped
        self.snoozed_until = None
        self.touch()

    def advance_step(self, step_index: int) -> bool:
        """Move the cursor forward to a fired step. Returns True if it moved."""
        if self.state != ReminderState.ACTIVE or step_index <= self.current_step_index:
            return False
        self.current_step_index = step_index
        self.touch()
        return True


# Pydantic Schemas

class ReminderCreate(BaseModel):
    """Schema for creating a reminder."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=4000)
    reminder_date: date
    reminder_time: Optional[time] = None
    recurrence_rule: Optional[str] = Field(None, max_length=500)
    escalation_policy_id: Optional[str] = None


class ReminderUpdate(BaseModel):
    """Schema for editing a reminder that is not yet closed."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=4000)
    reminder_date: Optional[date] = None
    reminder_time: Optional[time] = None
    clear_time: bool = False  # Turn a timed reminder into a date-only one
    recurrence_rule: Optional[str] = Field(None, max_length=500)
    escalation_policy_id: Optional[str] = None


class ReminderResponse(BaseModel):
    """Schema for reminder response."""
    id: str
    title: str
    description: Optional[str]
    reminder_date: date
    reminder_time: Optional[time]
    trigger_date: datetime
    recurrence_rule: Optional[str]
    state: ReminderState
    escalation_policy_id: Optional[str]
    current_step_index: int
    snoozed_until: Optional[datetime]
    source_kind: SourceKind
    origin_key: Optional[str]
    source_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
