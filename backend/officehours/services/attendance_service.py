"""
AttendanceStateMachine: the only writer of a booking's attendance columns.

STATES
======

    Unmarked ──▶ Attended
    Unmarked ──▶ NoShow
    Attended ──▶ Unmarked      (clear)
    NoShow   ──▶ Unmarked      (clear)

Attended ⇄ NoShow is not a transition. A host who really means it passes
force=True after looking at the current state; the change is recorded as two
audit rows (X → Unmarked, Unmarked → Y) in one transaction. Meet sync never
passes force, so automated marking can fill gaps but never overrides a host.

Every write goes through a conditional UPDATE keyed on the state that was
read, so two concurrent marks cannot both win.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from officehours.core.errors import (
    AlreadyMarked,
    BookingCancelled,
    BookingEngineError,
    BookingWaitlisted,
    InvalidFeedback,
    SessionNotEnded,
    SlotCancelled,
)
from officehours.core.logging import get_logger
from officehours.core.metrics import attendance_rejections, record_attendance
from officehours.db.base import utcnow
from officehours.models import Booking, Event, Slot
from officehours.models.booking import ATTENDED, NO_SHOW, UNMARKED
from officehours.schemas.attendance import (
    AttendanceOptions,
    AttendanceSource,
    AttendanceStatus,
    BulkAttendanceItem,
    BulkAttendanceResponse,
)
from officehours.schemas.intent import IntentType, SideEffectIntent
from officehours.services.dispatcher_service import SideEffectDispatcher
from officehours.services.slot_store import BookingTransaction, SlotStore

logger = get_logger(__name__)

TARGET_STATES = {
    AttendanceStatus.ATTENDED: ATTENDED,
    AttendanceStatus.NO_SHOW: NO_SHOW,
    AttendanceStatus.CLEAR: UNMARKED,
}

# Outcome written to the CRM meeting record for each resulting state
CRM_OUTCOMES = {
    ATTENDED: "COMPLETED",
    NO_SHOW: "NO_SHOW",
    UNMARKED: "SCHEDULED",
}


@dataclass
class AttendanceResult:
    booking: Booking
    changed: bool
    previous_state: str


def plan_transitions(current: str, target: str, force: bool) -> list[tuple[str, str]]:
    """
    Audit rows needed to move `current` to `target`.

    Returns [] for a no-op. Raises AlreadyMarked when the booking is already
    marked and the request is not a forced correction.
    """
    if current == target:
        if target == UNMARKED or force:
            return []
        raise AlreadyMarked(f"Booking is already marked {current}", current_state=current)
    if target == UNMARKED or current == UNMARKED:
        return [(current, target)]
    if not force:
        raise AlreadyMarked(
            f"Booking is already marked {current}; clear it or override to change",
            current_state=current,
        )
    return [(current, UNMARKED), (UNMARKED, target)]


class AttendanceStateMachine:
    def __init__(
        self,
        store: SlotStore,
        dispatcher: SideEffectDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self._clock = clock

    async def mark_attendance(
        self,
        booking_id: int,
        status: AttendanceStatus,
        options: Optional[AttendanceOptions] = None,
    ) -> AttendanceResult:
        options = options or AttendanceOptions()
        status = AttendanceStatus(status)
        source = AttendanceSource(options.source)
        target = TARGET_STATES[status]
        now = self._clock()

        try:
            async with self.store.booking_transaction(booking_id) as tx:
                self._check_markable(tx, now, requires_end=status != AttendanceStatus.CLEAR)
                current = tx.booking.attendance_state
                steps = plan_transitions(current, target, options.force)
                if steps:
                    await tx.set_attendance(
                        expected_state=current,
                        attended_at=now if target == ATTENDED else None,
                        no_show_at=now if target == NO_SHOW else None,
                    )
                    for from_state, to_state in steps:
                        tx.record_transition(from_state, to_state, source.value)
                booking, slot, event = tx.booking, tx.slot, tx.event
        except BookingEngineError as e:
            attendance_rejections.labels(code=e.code).inc()
            logger.info(
                "attendance_rejected",
                booking_id=booking_id,
                status=status.value,
                source=source.value,
                code=e.code,
            )
            raise

        if not steps:
            logger.debug("attendance_unchanged", booking_id=booking_id, state=current)
            return AttendanceResult(booking=booking, changed=False, previous_state=current)

        record_attendance(status.value, source.value)
        logger.info(
            "attendance_marked",
            booking_id=booking_id,
            slot_id=slot.id,
            previous_state=current,
            state=target,
            source=source.value,
            forced=len(steps) > 1,
        )
        await self.dispatcher.emit_all(
            self._intents(booking, slot, event, current, target, source, options.send_no_show_email)
        )
        return AttendanceResult(booking=booking, changed=True, previous_state=current)

    async def bulk_mark_attendance(
        self,
        booking_ids: Iterable[int],
        status: AttendanceStatus,
        options: Optional[AttendanceOptions] = None,
    ) -> BulkAttendanceResponse:
        """Apply the single-booking rule to each id independently."""
        options = options or AttendanceOptions(source=AttendanceSource.BULK)
        results: list[BulkAttendanceItem] = []
        for booking_id in dict.fromkeys(booking_ids):
            try:
                result = await self.mark_attendance(booking_id, status, options)
            except BookingEngineError as e:
                results.append(
                    BulkAttendanceItem(booking_id=booking_id, ok=False, error=e.code, detail=e.message)
                )
                continue
            results.append(BulkAttendanceItem(booking_id=booking_id, ok=True, changed=result.changed))

        succeeded = [item.booking_id for item in results if item.ok]
        failed = [item.booking_id for item in results if not item.ok]
        logger.info(
            "bulk_attendance_marked",
            status=AttendanceStatus(status).value,
            succeeded=len(succeeded),
            failed=len(failed),
        )
        return BulkAttendanceResponse(succeeded=succeeded, failed=failed, results=results)

    async def submit_feedback(self, booking_id: int, rating: int, comment: Optional[str] = None) -> Booking:
        if not 1 <= rating <= 5:
            raise InvalidFeedback("Rating must be between 1 and 5", booking_id=booking_id)
        now = self._clock()
        async with self.store.booking_transaction(booking_id) as tx:
            if tx.booking.cancelled_at is not None:
                raise BookingCancelled("Booking has been cancelled", booking_id=booking_id)
            if tx.slot.end_time > now:
                raise SessionNotEnded("Feedback opens once the session has ended", booking_id=booking_id)
            booking = await tx.set_feedback(rating, comment.strip() if comment else None, now)
        logger.info("feedback_submitted", booking_id=booking_id, rating=rating)
        return booking

    @staticmethod
    def _check_markable(tx: BookingTransaction, now: datetime, requires_end: bool) -> None:
        booking_id = tx.booking.id
        if tx.booking.cancelled_at is not None:
            raise BookingCancelled("Booking has been cancelled", booking_id=booking_id)
        if tx.slot.is_cancelled:
            raise SlotCancelled("This time slot has been cancelled", booking_id=booking_id)
        if tx.booking.is_waitlisted:
            raise BookingWaitlisted("Waitlisted bookings never held a seat", booking_id=booking_id)
        if requires_end and tx.slot.end_time > now:
            raise SessionNotEnded("Attendance can be marked once the session has ended", booking_id=booking_id)

    @staticmethod
    def _intents(
        booking: Booking,
        slot: Slot,
        event: Event,
        previous: str,
        target: str,
        source: AttendanceSource,
        send_no_show_email: bool,
    ) -> list[SideEffectIntent]:
        intents = [
            SideEffectIntent(
                type=IntentType.CRM_SYNC,
                booking_id=booking.id,
                payload={
                    "email": booking.email,
                    "slot_id": slot.id,
                    "event_id": event.id,
                    "outcome": CRM_OUTCOMES[target],
                    "previous_state": previous,
                    "source": source.value,
                },
            )
        ]
        if target == NO_SHOW and send_no_show_email and event.no_show_emails_enabled:
            intents.append(
                SideEffectIntent(
                    type=IntentType.NO_SHOW_EMAIL,
                    booking_id=booking.id,
                    payload={
                        "email": booking.email,
                        "first_name": booking.first_name,
                        "event_name": event.name,
                        "host_email": event.host_email,
                        "recording_link": slot.recording_link,
                    },
                )
            )
        return intents
