"""
Pytest fixtures for the engine, the HTTP client, and seeded slots.

Each test gets its own SQLite database file so concurrent sessions inside a
test see each other's commits, and tables never leak between tests. Time is
driven by fake clocks instead of sleeping.
"""

from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from officehours.core.config import Settings
from officehours.db.base import Base
from officehours.db.session import build_engine, build_session_factory
from officehours.main import create_app
from officehours.models import Event, Slot
from officehours.schemas.booking import AttendeeInfo
from officehours.schemas.intent import IntentType, SideEffectIntent
from officehours.services.engine import BookingEngine
from officehours.services.interfaces.context_backend import InMemoryContextBackend
from officehours.services.interfaces.enrichment import ContactEnricher
from officehours.services.interfaces.intent_queue import IntentQueue
from officehours.services.interfaces.meet_participants import MeetParticipant, MeetParticipantSource

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock returning a settable aware datetime."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeTimer:
    """Monotonic seconds for the context cache TTL."""

    def __init__(self, value: float = 1_000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class RecordingQueue(IntentQueue):
    def __init__(self):
        self.intents: list[SideEffectIntent] = []

    async def enqueue(self, intent: SideEffectIntent) -> None:
        self.intents.append(intent)

    def of_type(self, intent_type: IntentType) -> list[SideEffectIntent]:
        return [i for i in self.intents if i.type == intent_type]


class FakeEnricher(ContactEnricher):
    def __init__(self):
        self.calls: list[str] = []
        self.failing: set[str] = set()

    async def fetch(self, email: str):
        self.calls.append(email)
        if email in self.failing:
            raise RuntimeError("CRM timeout")
        return {"company": email.split("@")[1], "lifecycle_stage": "customer"}


class FakeParticipantSource(MeetParticipantSource):
    def __init__(self):
        self.by_slot: dict[int, list[MeetParticipant]] = {}

    async def participants(self, slot: Slot) -> list[MeetParticipant]:
        return self.by_slot.get(slot.id, [])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def enricher() -> FakeEnricher:
    return FakeEnricher()


@pytest.fixture
def participant_source() -> FakeParticipantSource:
    return FakeParticipantSource()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        REDIS_ENABLED=False,
        INTENT_QUEUE_BACKEND="memory",
        CONTEXT_CACHE_BACKEND="memory",
        ENVIRONMENT="test",
    )


@pytest_asyncio.fixture(scope="function")
async def engine(
    tmp_path, settings, clock, timer, queue, enricher, participant_source
) -> AsyncGenerator[BookingEngine, None]:
    """Create tables in a fresh database file, yield the engine, then dispose."""
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'officehours.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    booking_engine = BookingEngine(
        build_session_factory(db_engine),
        settings=settings,
        queue=queue,
        context_backend=InMemoryContextBackend(),
        enricher=enricher,
        participant_source=participant_source,
        clock=clock,
        cache_clock=timer,
        db_engine=db_engine,
    )
    await booking_engine.start()
    yield booking_engine
    await booking_engine.stop()


@pytest_asyncio.fixture(scope="function")
async def client(engine: BookingEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over an app wired to the test engine."""
    app = create_app(engine)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def office_hours(engine: BookingEngine) -> Event:
    return await engine.create_event("Product Office Hours", "host@example.com")


async def make_slot(engine: BookingEngine, event: Event, capacity: int, **kwargs) -> Slot:
    start = kwargs.pop("start_time", NOW + timedelta(days=1))
    end = kwargs.pop("end_time", start + timedelta(minutes=30))
    return await engine.create_slot(event.id, start, end, capacity, **kwargs)


def attendee(name: str, **kwargs) -> AttendeeInfo:
    return AttendeeInfo(first_name=name, email=f"{name.lower()}@example.com", **kwargs)


@pytest_asyncio.fixture
async def slot(engine: BookingEngine, office_hours: Event) -> Slot:
    """A slot with two seats starting tomorrow."""
    return await make_slot(engine, office_hours, capacity=2, meeting_link="https://meet.google.com/abc-defg-hij")
