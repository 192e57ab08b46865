"""
Pytest configuration and fixtures for RemindSync tests.
"""

import os

# Pin the local calendar before any settings are cached
os.environ["TIMEZONE"] = "UTC"

from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Dict, List, Optional, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from remindsync.domain.errors import FetchError, SchedulingError
from remindsync.domain.escalation import EscalationPolicy  # noqa: F401 - needed for table creation
from remindsync.domain.feed_source import RemoteFeedSource  # noqa: F401 - needed for table creation
from remindsync.domain.reminder import Base, Reminder
from remindsync.infrastructure.scheduler import AlertTag
from remindsync.infrastructure.store import RecordStore
from remindsync.usecases.escalation_engine import EscalationEngine


# Use a separate in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Fixed "now" for every test that injects a clock
NOW = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


class FakeAlertScheduler:
    """In-memory AlertScheduler that records what was scheduled per owner."""

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self.jobs: Dict[str, List[tuple]] = {}
        self.cancelled: List[str] = []
        self._counter = 0

    def outstanding(self, owner_id: Optional[str] = None) -> int:
        if owner_id is not None:
            return len(self.jobs.get(owner_id, []))
        return sum(len(items) for items in self.jobs.values())

    def instants(self, owner_id: str) -> List[datetime]:
        return [at for _, at, _ in self.jobs.get(owner_id, [])]

    def steps(self, owner_id: str) -> List[int]:
        return [tag.step_index for tag, _, _ in self.jobs.get(owner_id, [])]

    async def schedule(self, owner_id: str, tag: AlertTag, at: datetime, payload: dict) -> str:
        if self.outstanding() >= self.capacity:
            raise SchedulingError(f"capacity {self.capacity} reached")
        self._counter += 1
        self.jobs.setdefault(owner_id, []).append((tag, at, payload))
        return f"alert_{owner_id}_{tag.step_index}_{tag.kind.value}_{self._counter}"

    async def cancel_all(self, owner_id: str) -> int:
        self.cancelled.append(owner_id)
        return len(self.jobs.pop(owner_id, []))


class FakeFetcher:
    """FeedFetcher returning canned bodies (or raising canned errors) per URL."""

    def __init__(self, responses: Optional[Dict[str, Union[bytes, Exception]]] = None):
        self.responses = responses or {}
        self.calls: List[str] = []

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise FetchError(f"Invalid response from {url}: HTTP 404", status_code=404)
        if isinstance(response, Exception):
            raise response
        return response


@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def store(test_session) -> RecordStore:
    """Record store with the preset policies seeded."""
    record_store = RecordStore(test_session)
    await record_store.seed_presets()
    return record_store


@pytest.fixture
def fake_scheduler() -> FakeAlertScheduler:
    return FakeAlertScheduler()


@pytest.fixture
def escalation_engine(store, fake_scheduler) -> EscalationEngine:
    return EscalationEngine(store, fake_scheduler, max_repeat_alerts=50, clock=fixed_clock)


@pytest_asyncio.fixture
async def standard_policy(store) -> EscalationPolicy:
    return await store.find_policy_by_name("Standard")


@pytest.fixture
def make_reminder():
    """Build an unsaved reminder triggering at the given offset from NOW."""
    def _make(offset: timedelta = timedelta(hours=1), title: str = "Pay electricity bill", **kwargs) -> Reminder:
        trigger = NOW + offset
        return Reminder(
            title=title,
            reminder_date=trigger.date(),
            reminder_time=trigger.time(),
            **kwargs,
        )
    return _make


@pytest.fixture
def sample_reminder(make_reminder) -> Reminder:
    """A reminder due one hour from NOW."""
    return make_reminder(description="Monthly electricity payment")


@pytest.fixture
def date_only_reminder() -> Reminder:
    return Reminder(
        id="rent-reminder",
        title="Rent due",
        reminder_date=date(2024, 3, 5),
        reminder_time=None,
    )


@pytest.fixture
def timed_reminder() -> Reminder:
    return Reminder(
        id="dentist-reminder",
        title="Dentist, then pharmacy; bring card",
        description="Line one\nLine two",
        reminder_date=date(2024, 3, 1),
        reminder_time=time(9, 0),
        recurrence_rule="FREQ=WEEKLY;BYDAY=FR",
    )
