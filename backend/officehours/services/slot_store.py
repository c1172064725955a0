"""
SlotStore: the only component that reads or writes slot and booking rows.

CONCURRENCY STRATEGY: per-slot critical section
===============================================

Problem:
  Two requests for the last seat both count confirmed bookings, both see
  count < capacity, both insert a confirmed booking. Result: overbooking.
  The same race exists between waitlist promotion and new bookings, and
  between capacity edits and both.

Solution, three layers inside slot_transaction():

  1. In-process KeyedLock on the slot id. Serializes callers inside one
     engine instance without touching the database.
  2. SELECT ... FOR UPDATE on the slot row. On PostgreSQL this serializes
     engine instances; a second transaction blocks until the first commits
     and then reads fresh state.
  3. Compare-and-set on slots.version at commit (skipped when the
     transaction wrote nothing):
       UPDATE slots SET version = version + 1
       WHERE id = :slot_id AND version = :version_read
     If rows_affected == 0 another writer committed in between (possible on
     backends that ignore FOR UPDATE, e.g. SQLite across processes). The
     whole transaction, including the booking insert, rolls back and
     run_in_slot() retries with fresh state.

  The count-then-insert is therefore linearizable per slot at the storage
  layer; retries only handle the losing side of a conflict.

Attendance writes use booking_transaction(): per-booking lock, FOR UPDATE on
the booking row, FOR SHARE on its slot row (ordered against slot
cancellation), and a conditional UPDATE on the attendance columns.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select, update, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from officehours.core.errors import (
    BookingNotFound,
    EventNotFound,
    SlotConflict,
    SlotNotFound,
    AlreadyMarked,
    FeedbackAlreadySubmitted,
)
from officehours.core.logging import get_logger
from officehours.core.metrics import slot_conflicts
from officehours.infrastructure.locks import KeyedLock
from officehours.models import AttendanceTransition, Booking, Event, Slot
from officehours.models.booking import ATTENDED, NO_SHOW, UNMARKED

logger = get_logger(__name__)

T = TypeVar("T")


class SlotVersionConflict(Exception):
    """Internal signal: another writer committed against the slot first."""


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _attendance_clause(state: str):
    if state == ATTENDED:
        return Booking.attended_at.is_not(None)
    if state == NO_SHOW:
        return Booking.no_show_at.is_not(None)
    return Booking.attended_at.is_(None) & Booking.no_show_at.is_(None)


class SlotTransaction:
    """Mutation surface for one slot, valid only inside slot_transaction()."""

    def __init__(self, session: AsyncSession, slot: Slot, event: Event):
        self.session = session
        self.slot = slot
        self.event = event
        self._version_read = slot.version
        self.dirty = False

    async def confirmed_count(self) -> int:
        result = await self.session.execute(
            select(func.count(Booking.id)).where(
                Booking.slot_id == self.slot.id,
                Booking.cancelled_at.is_(None),
                Booking.is_waitlisted.is_(False),
            )
        )
        return result.scalar_one()

    async def waitlist_count(self) -> int:
        result = await self.session.execute(
            select(func.count(Booking.id)).where(
                Booking.slot_id == self.slot.id,
                Booking.cancelled_at.is_(None),
                Booking.is_waitlisted.is_(True),
            )
        )
        return result.scalar_one()

    async def max_waitlist_position(self) -> int:
        result = await self.session.execute(
            select(func.max(Booking.waitlist_position)).where(
                Booking.slot_id == self.slot.id,
                Booking.cancelled_at.is_(None),
                Booking.is_waitlisted.is_(True),
            )
        )
        return result.scalar_one() or 0

    async def find_active_booking(self, email: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking).where(
                Booking.slot_id == self.slot.id,
                Booking.email == normalize_email(email),
                Booking.cancelled_at.is_(None),
            )
        )
        return result.scalars().first()

    async def lock_booking(self, booking_id: int) -> Booking:
        result = await self.session.execute(
            select(Booking)
            .where(Booking.id == booking_id, Booking.slot_id == self.slot.id)
            .with_for_update()
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        return booking

    async def insert_booking(
        self,
        first_name: str,
        last_name: str,
        email: str,
        question_responses: Optional[dict] = None,
        waitlist_position: Optional[int] = None,
    ) -> Booking:
        booking = Booking(
            slot_id=self.slot.id,
            first_name=first_name,
            last_name=last_name or "",
            email=normalize_email(email),
            question_responses=question_responses or {},
            is_waitlisted=waitlist_position is not None,
            waitlist_position=waitlist_position,
        )
        self.session.add(booking)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # A writer outside this instance's lock got there first; the retry
            # re-runs the duplicate and capacity checks against fresh rows.
            logger.info("booking_insert_conflict", slot_id=self.slot.id, error=str(e.orig))
            raise SlotVersionConflict() from e
        self.dirty = True
        return booking

    async def next_waitlisted(self) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(
                Booking.slot_id == self.slot.id,
                Booking.cancelled_at.is_(None),
                Booking.is_waitlisted.is_(True),
            )
            .order_by(Booking.waitlist_position.asc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def promote(self, booking: Booking, now: datetime) -> Booking:
        booking.is_waitlisted = False
        booking.waitlist_position = None
        booking.promoted_from_waitlist_at = now
        await self.session.flush()
        self.dirty = True
        return booking

    async def cancel_booking(self, booking: Booking, now: datetime) -> Booking:
        booking.cancelled_at = now
        await self.session.flush()
        self.dirty = True
        return booking

    async def compact_waitlist(self) -> int:
        """
        Renumber active waitlisted bookings to 1..n in queue order.
        Rows are moved one at a time in ascending order so the partial unique
        index on (slot_id, waitlist_position) never sees two equal positions.
        """
        result = await self.session.execute(
            select(Booking.id, Booking.waitlist_position)
            .where(
                Booking.slot_id == self.slot.id,
                Booking.cancelled_at.is_(None),
                Booking.is_waitlisted.is_(True),
            )
            .order_by(Booking.waitlist_position.asc())
        )
        moved = 0
        for expected, (booking_id, position) in enumerate(result.all(), start=1):
            if position == expected:
                continue
            await self.session.execute(
                update(Booking)
                .where(Booking.id == booking_id)
                .values(waitlist_position=expected)
            )
            moved += 1
        self.dirty = self.dirty or moved > 0
        return moved

    async def set_capacity(self, capacity: int) -> Slot:
        self.slot.capacity = capacity
        await self.session.flush()
        self.dirty = True
        return self.slot

    async def cancel_slot(self) -> Slot:
        self.slot.is_cancelled = True
        await self.session.flush()
        self.dirty = True
        return self.slot

    async def claim(self) -> None:
        if not self.dirty:
            return
        result = await self.session.execute(
            update(Slot)
            .where(Slot.id == self.slot.id, Slot.version == self._version_read)
            .values(version=Slot.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SlotVersionConflict()
        set_committed_value(self.slot, "version", self._version_read + 1)


class BookingTransaction:
    """Mutation surface for one booking, valid only inside booking_transaction()."""

    def __init__(self, session: AsyncSession, booking: Booking, slot: Slot, event: Event):
        self.session = session
        self.booking = booking
        self.slot = slot
        self.event = event

    async def set_attendance(
        self,
        expected_state: str,
        attended_at: Optional[datetime],
        no_show_at: Optional[datetime],
    ) -> Booking:
        result = await self.session.execute(
            update(Booking)
            .where(
                Booking.id == self.booking.id,
                Booking.cancelled_at.is_(None),
                _attendance_clause(expected_state),
            )
            .values(attended_at=attended_at, no_show_at=no_show_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AlreadyMarked(
                "Attendance changed concurrently; re-fetch and retry",
                booking_id=self.booking.id,
            )
        await self.session.refresh(self.booking)
        return self.booking

    def record_transition(self, from_state: str, to_state: str, source: str) -> None:
        self.session.add(
            AttendanceTransition(
                booking_id=self.booking.id,
                from_state=from_state,
                to_state=to_state,
                source=source,
            )
        )

    async def set_feedback(self, rating: int, comment: Optional[str], now: datetime) -> Booking:
        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == self.booking.id, Booking.feedback_submitted_at.is_(None))
            .values(feedback_rating=rating, feedback_comment=comment, feedback_submitted_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise FeedbackAlreadySubmitted(
                "Feedback was already submitted for this booking",
                booking_id=self.booking.id,
            )
        await self.session.refresh(self.booking)
        return self.booking


class SlotStore:
    """
    Durable record of events, slots and bookings.

    Other components read through the query methods and write only through
    slot_transaction() / booking_transaction().
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_retries: int = 3):
        self._session_factory = session_factory
        self.max_retries = max_retries
        self._slot_locks = KeyedLock()
        self._booking_locks = KeyedLock()

    # ------------------------------------------------------------------
    # Transactional mutation surface
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def slot_transaction(self, slot_id: int) -> AsyncIterator[SlotTransaction]:
        async with self._slot_locks.hold(slot_id):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(Slot, Event)
                        .join(Event, Event.id == Slot.event_id)
                        .where(Slot.id == slot_id)
                        .with_for_update(of=Slot)
                    )
                    row = result.one_or_none()
                    if row is None:
                        raise SlotNotFound(f"Slot {slot_id} not found", slot_id=slot_id)
                    tx = SlotTransaction(session, row[0], row[1])
                    yield tx
                    await tx.claim()

    async def run_in_slot(
        self,
        slot_id: int,
        operation: Callable[[SlotTransaction], Awaitable[T]],
    ) -> T:
        """
        Run `operation` inside a slot transaction, retrying on version conflicts.
        Domain errors raised by `operation` abort the transaction and propagate.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.slot_transaction(slot_id) as tx:
                    return await operation(tx)
            except SlotVersionConflict:
                slot_conflicts.inc()
                logger.info("slot_retry", slot_id=slot_id, attempt=attempt, reason="version_conflict")
                if attempt == self.max_retries:
                    raise SlotConflict(
                        "Slot changed while the request was processed. Please try again.",
                        slot_id=slot_id,
                    )
        raise SlotConflict("Slot transaction did not complete", slot_id=slot_id)

    @asynccontextmanager
    async def booking_transaction(self, booking_id: int) -> AsyncIterator[BookingTransaction]:
        async with self._booking_locks.hold(booking_id):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(Booking).where(Booking.id == booking_id).with_for_update()
                    )
                    booking = result.scalar_one_or_none()
                    if booking is None:
                        raise BookingNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
                    result = await session.execute(
                        select(Slot, Event)
                        .join(Event, Event.id == Slot.event_id)
                        .where(Slot.id == booking.slot_id)
                        .with_for_update(read=True, of=Slot)
                    )
                    slot, event = result.one()
                    yield BookingTransaction(session, booking, slot, event)

    # ------------------------------------------------------------------
    # Seeding surface
    # ------------------------------------------------------------------

    async def create_event(
        self,
        name: str,
        host_email: str,
        waitlist_enabled: bool = True,
        waitlist_limit: Optional[int] = None,
        no_show_emails_enabled: bool = True,
    ) -> Event:
        async with self._session_factory() as session:
            async with session.begin():
                event = Event(
                    name=name,
                    host_email=normalize_email(host_email),
                    waitlist_enabled=waitlist_enabled,
                    waitlist_limit=waitlist_limit,
                    no_show_emails_enabled=no_show_emails_enabled,
                )
                session.add(event)
                await session.flush()
            await session.refresh(event)
        logger.info("event_created", event_id=event.id, name=event.name)
        return event

    async def create_slot(
        self,
        event_id: int,
        start_time: datetime,
        end_time: datetime,
        capacity: int,
        meeting_link: Optional[str] = None,
        recording_link: Optional[str] = None,
    ) -> Slot:
        async with self._session_factory() as session:
            async with session.begin():
                if await session.get(Event, event_id) is None:
                    raise EventNotFound(f"Event {event_id} not found", event_id=event_id)
                slot = Slot(
                    event_id=event_id,
                    start_time=start_time,
                    end_time=end_time,
                    capacity=capacity,
                    meeting_link=meeting_link,
                    recording_link=recording_link,
                )
                session.add(slot)
                await session.flush()
            await session.refresh(slot)
        logger.info("slot_created", slot_id=slot.id, event_id=event_id, capacity=capacity)
        return slot

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    async def get_event(self, event_id: int) -> Event:
        async with self._session_factory() as session:
            event = await session.get(Event, event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found", event_id=event_id)
        return event

    async def get_slot(self, slot_id: int) -> Slot:
        async with self._session_factory() as session:
            slot = await session.get(Slot, slot_id)
        if slot is None:
            raise SlotNotFound(f"Slot {slot_id} not found", slot_id=slot_id)
        return slot

    async def get_booking(self, booking_id: int) -> Booking:
        async with self._session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found", booking_id=booking_id)
        return booking

    async def list_slot_bookings(self, slot_id: int, include_cancelled: bool = False) -> list[Booking]:
        """Confirmed bookings first (by arrival), then the waitlist in queue order."""
        query = select(Booking).where(Booking.slot_id == slot_id)
        if not include_cancelled:
            query = query.where(Booking.cancelled_at.is_(None))
        query = query.order_by(
            Booking.is_waitlisted.asc(),
            Booking.waitlist_position.asc(),
            Booking.created_at.asc(),
            Booking.id.asc(),
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def slot_counts(self, slot_id: int) -> tuple[int, int]:
        """(confirmed, waitlisted) among non-cancelled bookings."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.coalesce(func.sum(case((Booking.is_waitlisted.is_(False), 1), else_=0)), 0),
                    func.coalesce(func.sum(case((Booking.is_waitlisted.is_(True), 1), else_=0)), 0),
                ).where(Booking.slot_id == slot_id, Booking.cancelled_at.is_(None))
            )
            confirmed, waitlisted = result.one()
        return int(confirmed), int(waitlisted)

    async def event_attendance_counts(self, event_id: int, now: datetime) -> dict:
        """Attendance tallies over confirmed, non-cancelled bookings in ended, live slots."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    func.count(func.distinct(Slot.id)),
                    func.count(Booking.id),
                    func.coalesce(func.sum(case((Booking.attended_at.is_not(None), 1), else_=0)), 0),
                    func.coalesce(func.sum(case((Booking.no_show_at.is_not(None), 1), else_=0)), 0),
                )
                .select_from(Booking)
                .join(Slot, Slot.id == Booking.slot_id)
                .where(
                    Slot.event_id == event_id,
                    Slot.is_cancelled.is_(False),
                    Slot.end_time <= now,
                    Booking.cancelled_at.is_(None),
                    Booking.is_waitlisted.is_(False),
                )
            )
            sessions, total, attended, no_show = result.one()
        return {
            "sessions": int(sessions),
            "bookings": int(total),
            "attended": int(attended),
            "no_show": int(no_show),
        }

    async def bookings_for_emails(self, emails: list[str]) -> list[tuple[Booking, datetime]]:
        """
        Seat-holding bookings for the given emails with their slot start, latest
        session first. Waitlisted bookings and cancelled slots are left out.
        """
        if not emails:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Booking, Slot.start_time)
                .join(Slot, Slot.id == Booking.slot_id)
                .where(
                    Booking.email.in_(emails),
                    Booking.cancelled_at.is_(None),
                    Booking.is_waitlisted.is_(False),
                    Slot.is_cancelled.is_(False),
                )
                .order_by(Slot.start_time.desc(), Booking.id.desc())
            )
            return [(row[0], row[1]) for row in result.all()]

    async def slots_pending_promotion(self, now: datetime) -> list[int]:
        """Live, not-yet-started slots that still have an active waitlist."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Slot.id)
                .join(Booking, Booking.slot_id == Slot.id)
                .where(
                    Slot.is_cancelled.is_(False),
                    Slot.start_time > now,
                    Booking.is_waitlisted.is_(True),
                    Booking.cancelled_at.is_(None),
                )
                .distinct()
                .order_by(Slot.id)
            )
            return list(result.scalars().all())

    async def slots_ended_between(self, earliest: datetime, latest: datetime) -> list[Slot]:
        """Live slots with a meeting link whose end time falls in (earliest, latest)."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Slot)
                .where(
                    Slot.is_cancelled.is_(False),
                    Slot.meeting_link.is_not(None),
                    Slot.end_time > earliest,
                    Slot.end_time < latest,
                )
                .order_by(Slot.end_time.asc())
            )
            return list(result.scalars().all())

    async def unmarked_bookings(self, slot_id: int) -> list[Booking]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Booking)
                .where(
                    Booking.slot_id == slot_id,
                    Booking.cancelled_at.is_(None),
                    Booking.is_waitlisted.is_(False),
                    _attendance_clause(UNMARKED),
                )
                .order_by(Booking.id)
            )
            return list(result.scalars().all())

    async def attendance_history(self, booking_id: int) -> list[AttendanceTransition]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AttendanceTransition)
                .where(AttendanceTransition.booking_id == booking_id)
                .order_by(AttendanceTransition.id.asc())
            )
            return list(result.scalars().all())
