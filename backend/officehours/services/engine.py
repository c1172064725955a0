"""
BookingEngine: wires the store, allocator, promoter, attendance state machine,
dispatcher and context cache together and exposes the engine's public
operations.

Mutations that can free a seat (cancel_booking, set_slot_capacity) run
promotion after their own commit. Side-effect intents are emitted after the
producing transaction commits.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from officehours.core.config import Settings, get_settings
from officehours.core.logging import get_logger
from officehours.db.base import utcnow
from officehours.db.session import build_engine, build_session_factory
from officehours.infrastructure.redis_client import close_redis
from officehours.models import Booking, Event, Slot
from officehours.schemas.attendance import AttendanceOptions, AttendanceStatus, BulkAttendanceResponse
from officehours.schemas.attendee import AttendeeContext
from officehours.schemas.booking import AttendeeInfo
from officehours.schemas.slot import EventAttendanceSummary, SlotSummary
from officehours.services.attendance_service import AttendanceResult, AttendanceStateMachine
from officehours.services.attendance_sync import AttendanceSyncJob, SlotSyncResult
from officehours.services.booking_service import BookingResult, CapacityAllocator
from officehours.services.cache_service import AttendeeContextCache
from officehours.services.dispatcher_service import SideEffectDispatcher
from officehours.services.interfaces.context_backend import ContextCacheBackend
from officehours.services.interfaces.enrichment import ContactEnricher, NullEnricher
from officehours.services.interfaces.intent_queue import IntentQueue
from officehours.services.interfaces.meet_participants import MeetParticipantSource, NullParticipantSource
from officehours.services.slot_service import CancellationResult, CapacityChangeResult, SlotService
from officehours.services.slot_store import SlotStore
from officehours.services.strategy_factory import get_context_backend, get_intent_queue
from officehours.services.waitlist_service import WaitlistPromoter

logger = get_logger(__name__)


class BookingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        queue: Optional[IntentQueue] = None,
        context_backend: Optional[ContextCacheBackend] = None,
        enricher: Optional[ContactEnricher] = None,
        participant_source: Optional[MeetParticipantSource] = None,
        clock: Callable[[], datetime] = utcnow,
        cache_clock: Optional[Callable[[], float]] = None,
        db_engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings or get_settings()
        self._db_engine = db_engine

        self.store = SlotStore(session_factory, max_retries=self.settings.BOOKING_MAX_RETRY_ATTEMPTS)
        self.queue = queue or get_intent_queue(self.settings)
        self.dispatcher = SideEffectDispatcher(self.queue)
        self.allocator = CapacityAllocator(self.store, clock=clock)
        self.promoter = WaitlistPromoter(self.store, self.dispatcher, clock=clock)
        self.slots = SlotService(self.store, self.promoter, clock=clock)
        self.attendance = AttendanceStateMachine(self.store, self.dispatcher, clock=clock)
        self.attendance_sync = AttendanceSyncJob(
            self.store,
            self.attendance,
            participant_source or NullParticipantSource(),
            clock=clock,
            settings=self.settings,
        )

        cache_kwargs = {"clock": cache_clock} if cache_clock else {}
        self.context_cache = AttendeeContextCache(
            self.store,
            enricher or NullEnricher(),
            context_backend or get_context_backend(self.settings),
            ttl_seconds=self.settings.CONTEXT_CACHE_TTL_SECONDS,
            concurrency=self.settings.ENRICHMENT_CONCURRENCY,
            now=clock,
            **cache_kwargs,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "BookingEngine":
        settings = settings or get_settings()
        db_engine = build_engine(settings.DATABASE_URL)
        return cls(build_session_factory(db_engine), settings=settings, db_engine=db_engine, **kwargs)

    async def start(self) -> None:
        await self.dispatcher.start()
        logger.info("booking_engine_started", queue=type(self.queue).__name__)

    async def stop(self) -> None:
        await self.dispatcher.stop()
        await close_redis()
        if self._db_engine is not None:
            await self._db_engine.dispose()
        logger.info("booking_engine_stopped")

    # Seeding

    async def create_event(self, name: str, host_email: str, **options) -> Event:
        return await self.store.create_event(name, host_email, **options)

    async def create_slot(
        self,
        event_id: int,
        start_time: datetime,
        end_time: datetime,
        capacity: int,
        meeting_link: Optional[str] = None,
        recording_link: Optional[str] = None,
    ) -> Slot:
        return await self.store.create_slot(
            event_id, start_time, end_time, capacity, meeting_link=meeting_link, recording_link=recording_link
        )

    # Capacity and waitlist

    async def request_booking(self, slot_id: int, attendee: AttendeeInfo, allow_past: bool = False) -> BookingResult:
        return await self.allocator.request_booking(slot_id, attendee, allow_past=allow_past)

    async def cancel_booking(self, booking_id: int) -> CancellationResult:
        return await self.slots.cancel_booking(booking_id)

    async def set_slot_capacity(self, slot_id: int, capacity: int) -> CapacityChangeResult:
        return await self.slots.set_slot_capacity(slot_id, capacity)

    async def cancel_slot(self, slot_id: int) -> Slot:
        return await self.slots.cancel_slot(slot_id)

    async def on_capacity_freed(self, slot_id: int) -> list[Booking]:
        return await self.promoter.on_capacity_freed(slot_id)

    async def reconcile_waitlists(self, now: Optional[datetime] = None) -> dict:
        return await self.promoter.reconcile(now)

    # Attendance

    async def mark_attendance(
        self,
        booking_id: int,
        status: AttendanceStatus,
        options: Optional[AttendanceOptions] = None,
    ) -> AttendanceResult:
        return await self.attendance.mark_attendance(booking_id, status, options)

    async def bulk_mark_attendance(
        self,
        booking_ids: Iterable[int],
        status: AttendanceStatus,
        options: Optional[AttendanceOptions] = None,
    ) -> BulkAttendanceResponse:
        return await self.attendance.bulk_mark_attendance(booking_ids, status, options)

    async def submit_feedback(self, booking_id: int, rating: int, comment: Optional[str] = None) -> Booking:
        return await self.attendance.submit_feedback(booking_id, rating, comment)

    async def sync_slot_attendance(self, slot_id: int) -> SlotSyncResult:
        return await self.attendance_sync.sync_slot(slot_id)

    async def run_attendance_sync(self, now: Optional[datetime] = None) -> list[SlotSyncResult]:
        return await self.attendance_sync.run(now)

    # Reads

    async def attendee_context(self, emails: Iterable[str]) -> dict[str, AttendeeContext]:
        return await self.context_cache.get_many(emails)

    async def get_booking(self, booking_id: int) -> Booking:
        return await self.store.get_booking(booking_id)

    async def get_event(self, event_id: int) -> Event:
        return await self.store.get_event(event_id)

    async def slot_summary(self, slot_id: int) -> SlotSummary:
        return await self.slots.slot_summary(slot_id)

    async def event_attendance_summary(self, event_id: int) -> EventAttendanceSummary:
        return await self.slots.event_attendance_summary(event_id)

    async def list_slot_bookings(self, slot_id: int, include_cancelled: bool = False) -> list[Booking]:
        return await self.slots.list_slot_bookings(slot_id, include_cancelled=include_cancelled)

    async def attendance_history(self, booking_id: int):
        await self.store.get_booking(booking_id)
        return await self.store.attendance_history(booking_id)
