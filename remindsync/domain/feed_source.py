"""
Remote calendar feed sources and the transient events parsed from them.
"""

import json
import uuid
from datetime import datetime, timedelta
from typing import Optional, Set

from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text
from pydantic import BaseModel, Field

from remindsync.domain.errors import ValidationError
from remindsync.domain.reminder import Base
from remindsync.utils.time import as_utc


def encode_key_set(keys: Set[str]) -> str:
    return json.dumps(sorted(keys))


def decode_key_set(data: Optional[str]) -> Set[str]:
    """Decode a stored origin-key set, failing closed on anything but a list of strings."""
    if not data:
        return set()
    try:
        value = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Corrupt ignored origin keys: {e}") from e
    if not isinstance(value, list) or not all(isinstance(k, str) for k in value):
        raise ValidationError("Corrupt ignored origin keys: expected a list of strings")
    return set(value)


class RemoteFeedSource(Base):
    """SQLAlchemy model for a subscribed calendar feed."""

    __tablename__ = "feed_sources"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    endpoint = Column(String(2000), nullable=False)
    last_synced_at = Column(DateTime, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    sync_interval_minutes = Column(Integer, nullable=False, default=60)
    # Origin keys of events the user has taken local ownership of
    ignored_origin_keys_json = Column(Text, nullable=False, default="[]")

    def __init__(self, **kwargs):
        kwargs.setdefault("id", str(uuid.uuid4()))
        kwargs.setdefault("enabled", True)
        kwargs.setdefault("sync_interval_minutes", 60)
        kwargs.setdefault("ignored_origin_keys_json", "[]")
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<RemoteFeedSource(id={self.id}, name={self.name}, enabled={self.enabled})>"

    @property
    def ignored_origin_keys(self) -> Set[str]:
        return decode_key_set(self.ignored_origin_keys_json)

    @ignored_origin_keys.setter
    def ignored_origin_keys(self, keys: Set[str]) -> None:
        self.ignored_origin_keys_json = encode_key_set(set(keys))

    def mark_origin_ignored(self, origin_key: str) -> None:
        keys = self.ignored_origin_keys
        keys.add(origin_key)
        self.ignored_origin_keys = keys

    def is_origin_ignored(self, origin_key: str) -> bool:
        return origin_key in self.ignored_origin_keys

    def is_due(self, now: datetime) -> bool:
        """Whether the resync interval has elapsed since the last successful sync."""
        if self.last_synced_at is None:
            return True
        return as_utc(now) - as_utc(self.last_synced_at) >= timedelta(minutes=self.sync_interval_minutes)


class CalendarEvent(BaseModel):
    """A single event parsed from a calendar feed."""
    origin_key: str
    title: str
    description: Optional[str] = None
    start: datetime  # Aware UTC
    end: Optional[datetime] = None
    recurrence_rule: Optional[str] = None
    all_day: bool = False


# Pydantic Schemas

class FeedSourceCreate(BaseModel):
    """Schema for subscribing to a calendar feed."""
    name: str = Field(..., min_length=1, max_length=255)
    endpoint: str = Field(..., min_length=1, max_length=2000)
    sync_interval_minutes: int = Field(60, ge=1)
    enabled: bool = True


class FeedSourceResponse(BaseModel):
    """Schema for feed source response."""
    id: str
    name: str
    endpoint: str
    last_synced_at: Optional[datetime]
    enabled: bool
    sync_interval_minutes: int
    ignored_origin_keys: Set[str]

    class Config:
        from_attributes = True


class SyncResult(BaseModel):
    """Outcome of syncing one feed source."""
    source_id: str
    source_name: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0  # Ignored origin keys and locally detached reminders
    skipped_in_flight: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped_in_flight
