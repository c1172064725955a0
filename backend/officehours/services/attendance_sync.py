"""
Automated attendance from conference participant reports.

Runs periodically over sessions that ended 30 to 90 minutes ago. Each unmarked
confirmed booking becomes attended when its email shows up in the participant
report for long enough, otherwise no-show. The job goes through the
AttendanceStateMachine without force, so anything a host already marked is
left alone and counted as skipped.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from officehours.core.config import Settings, get_settings
from officehours.core.errors import AlreadyMarked, BookingEngineError
from officehours.core.logging import get_logger
from officehours.db.base import utcnow
from officehours.models import Booking
from officehours.schemas.attendance import AttendanceOptions, AttendanceSource, AttendanceStatus
from officehours.services.attendance_service import AttendanceStateMachine
from officehours.services.interfaces.meet_participants import (
    MeetParticipant,
    MeetParticipantSource,
    ParticipantsUnavailable,
)
from officehours.services.slot_store import SlotStore, normalize_email

logger = get_logger(__name__)


@dataclass
class SlotSyncResult:
    slot_id: int
    participants: int = 0
    attended: int = 0
    no_show: int = 0
    skipped: int = 0


def match_participants(
    participants: Iterable[MeetParticipant],
    bookings: Iterable[Booking],
    min_minutes: float,
) -> dict[int, AttendanceStatus]:
    """Map booking id to attended / no_show from accumulated minutes per email."""
    minutes = defaultdict(float)
    for participant in participants:
        if participant.email:
            minutes[normalize_email(participant.email)] += participant.minutes_present

    return {
        booking.id: (
            AttendanceStatus.ATTENDED
            if minutes.get(normalize_email(booking.email), 0) >= min_minutes
            else AttendanceStatus.NO_SHOW
        )
        for booking in bookings
    }


class AttendanceSyncJob:
    def __init__(
        self,
        store: SlotStore,
        machine: AttendanceStateMachine,
        source: MeetParticipantSource,
        clock: Callable[[], datetime] = utcnow,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.machine = machine
        self.source = source
        self._clock = clock
        self.settings = settings or get_settings()

    async def sync_slot(self, slot_id: int) -> SlotSyncResult:
        """
        Raises:
            SlotNotFound, ParticipantsUnavailable
        """
        result = SlotSyncResult(slot_id=slot_id)
        slot = await self.store.get_slot(slot_id)
        bookings = await self.store.unmarked_bookings(slot_id)
        if not bookings:
            return result

        participants = await self.source.participants(slot)
        result.participants = len(participants)
        decisions = match_participants(participants, bookings, self.settings.AUTO_ATTENDANCE_MIN_MINUTES)
        options = AttendanceOptions(source=AttendanceSource.MEET_SYNC)

        for booking_id, status in decisions.items():
            try:
                outcome = await self.machine.mark_attendance(booking_id, status, options)
            except AlreadyMarked:
                result.skipped += 1
                continue
            except BookingEngineError as e:
                # Cancelled or otherwise unmarkable since the unmarked query ran
                result.skipped += 1
                logger.info("attendance_sync_skipped", booking_id=booking_id, code=e.code)
                continue
            if not outcome.changed:
                result.skipped += 1
            elif status == AttendanceStatus.ATTENDED:
                result.attended += 1
            else:
                result.no_show += 1

        logger.info(
            "attendance_synced",
            slot_id=slot_id,
            participants=result.participants,
            attended=result.attended,
            no_show=result.no_show,
            skipped=result.skipped,
        )
        return result

    async def run(self, now: Optional[datetime] = None) -> list[SlotSyncResult]:
        now = now or self._clock()
        earliest = now - timedelta(minutes=self.settings.AUTO_ATTENDANCE_WINDOW_MAX_MINUTES)
        latest = now - timedelta(minutes=self.settings.AUTO_ATTENDANCE_WINDOW_MIN_MINUTES)
        slots = await self.store.slots_ended_between(earliest, latest)

        results: list[SlotSyncResult] = []
        for slot in slots:
            try:
                results.append(await self.sync_slot(slot.id))
            except ParticipantsUnavailable as e:
                logger.warning("attendance_sync_unavailable", slot_id=slot.id, error=str(e))
            except BookingEngineError as e:
                logger.error("attendance_sync_failed", slot_id=slot.id, code=e.code)
            except Exception as e:
                # Provider transport errors (timeouts, 5xx) only cost this slot
                logger.error("attendance_sync_failed", slot_id=slot.id, error=str(e), exc_info=True)

        logger.info("attendance_sync_run", slots=len(slots), synced=len(results))
        return results
