"""
CapacityAllocator: decides whether a booking request is confirmed or
waitlisted.

PLACEMENT RULE
==============

Inside one per-slot critical section (see slot_store):

  1. slot must be live (not cancelled) and not started, unless the caller is
     a backfill/import path (allow_past=True)
  2. the attendee email must not already hold an active booking on the slot
  3. confirmed = count(active, non-waitlisted bookings)
     confirmed <  capacity  -> insert confirmed
     confirmed >= capacity  -> insert waitlisted at max(position) + 1

  The count and the insert commit together or not at all. A lost
  compare-and-set retries the whole decision against fresh rows.

capacity_snapshot() is the one place remaining seats and percent-full are
derived; every read path calls it instead of recomputing.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from officehours.core.errors import (
    BookingEngineError,
    DuplicateBooking,
    SlotCancelled,
    SlotConflict,
    SlotFull,
    SlotInPast,
    WaitlistFull,
)
from officehours.core.logging import get_logger
from officehours.core.metrics import booking_latency, record_booking_request
from officehours.db.base import utcnow
from officehours.models import Booking
from officehours.schemas.booking import AttendeeInfo
from officehours.schemas.slot import CapacitySnapshot
from officehours.services.slot_store import SlotStore, SlotTransaction

logger = get_logger(__name__)

CONFIRMED = "confirmed"
WAITLISTED = "waitlisted"


@dataclass
class BookingResult:
    booking: Booking
    placement: str


def capacity_snapshot(confirmed: int, capacity: int) -> CapacitySnapshot:
    """Pure derivation of seat usage from (confirmed count, capacity)."""
    remaining = max(capacity - confirmed, 0)
    if capacity <= 0:
        percent_full = 100.0
    else:
        percent_full = round(min(confirmed / capacity, 1.0) * 100, 1)
    return CapacitySnapshot(
        capacity=capacity,
        confirmed=confirmed,
        remaining=remaining,
        percent_full=percent_full,
        is_full=remaining == 0,
    )


class CapacityAllocator:
    def __init__(self, store: SlotStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def request_booking(
        self,
        slot_id: int,
        attendee: AttendeeInfo,
        allow_past: bool = False,
    ) -> BookingResult:
        """
        Place a booking on a slot.

        Raises:
            SlotNotFound, SlotCancelled, SlotInPast, DuplicateBooking,
            SlotFull (waitlist disabled), WaitlistFull (waitlist limit hit),
            SlotConflict (lost the slot to concurrent writers on every retry)
        """
        started = time.perf_counter()
        now = self._clock()

        async def allocate(tx: SlotTransaction) -> Booking:
            slot = tx.slot
            if slot.is_cancelled:
                raise SlotCancelled("This time slot is no longer available", slot_id=slot_id)
            if not allow_past and slot.start_time <= now:
                raise SlotInPast("This time slot has already started", slot_id=slot_id)
            if await tx.find_active_booking(attendee.email):
                raise DuplicateBooking("You have already booked this time slot", slot_id=slot_id)

            confirmed = await tx.confirmed_count()
            if confirmed < slot.capacity:
                return await tx.insert_booking(
                    attendee.first_name,
                    attendee.last_name,
                    attendee.email,
                    attendee.question_responses,
                )

            if not tx.event.waitlist_enabled:
                raise SlotFull("This time slot is full", slot_id=slot_id)
            limit = tx.event.waitlist_limit
            if limit is not None and await tx.waitlist_count() >= limit:
                raise WaitlistFull("This time slot and its waitlist are both full", slot_id=slot_id)

            position = await tx.max_waitlist_position() + 1
            return await tx.insert_booking(
                attendee.first_name,
                attendee.last_name,
                attendee.email,
                attendee.question_responses,
                waitlist_position=position,
            )

        try:
            booking = await self.store.run_in_slot(slot_id, allocate)
        except SlotConflict:
            record_booking_request("conflict")
            raise
        except BookingEngineError as e:
            record_booking_request("rejected")
            logger.warning("booking_rejected", slot_id=slot_id, code=e.code)
            raise
        finally:
            booking_latency.observe(time.perf_counter() - started)

        placement = WAITLISTED if booking.is_waitlisted else CONFIRMED
        record_booking_request(placement)
        logger.info(
            "booking_created",
            booking_id=booking.id,
            slot_id=slot_id,
            placement=placement,
            waitlist_position=booking.waitlist_position,
            backfill=allow_past,
        )
        return BookingResult(booking=booking, placement=placement)
