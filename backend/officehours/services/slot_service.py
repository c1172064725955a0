"""
Slot-level mutations that can free seats, plus the dashboard read surface.

Each mutation commits its own slot transaction first and only then hands the
slot to the WaitlistPromoter, which opens a fresh transaction and recomputes
free seats from stored rows.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from officehours.core.errors import (
    BookingAlreadyCancelled,
    CapacityBelowConfirmed,
    InvalidCapacity,
    SlotCancelled,
)
from officehours.core.logging import get_logger
from officehours.core.metrics import booking_cancellations
from officehours.db.base import utcnow
from officehours.models import Booking, Slot
from officehours.schemas.slot import EventAttendanceSummary, SlotResponse, SlotSummary
from officehours.services.booking_service import CONFIRMED, WAITLISTED, capacity_snapshot
from officehours.services.slot_store import SlotStore, SlotTransaction
from officehours.services.waitlist_service import WaitlistPromoter

logger = get_logger(__name__)


@dataclass
class CancellationResult:
    booking: Booking
    promoted: list[Booking] = field(default_factory=list)


@dataclass
class CapacityChangeResult:
    slot: Slot
    promoted: list[Booking] = field(default_factory=list)


class SlotService:
    def __init__(
        self,
        store: SlotStore,
        promoter: WaitlistPromoter,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.promoter = promoter
        self._clock = clock

    async def cancel_booking(self, booking_id: int) -> CancellationResult:
        """
        Cancel a confirmed or waitlisted booking.

        A cancelled confirmed booking frees a seat and triggers promotion; a
        cancelled waitlisted booking closes the gap in the queue.
        """
        booking = await self.store.get_booking(booking_id)
        now = self._clock()

        async def cancel(tx: SlotTransaction) -> tuple[Booking, str]:
            if tx.slot.is_cancelled:
                raise SlotCancelled("This time slot has been cancelled", slot_id=tx.slot.id)
            locked = await tx.lock_booking(booking_id)
            if locked.cancelled_at is not None:
                raise BookingAlreadyCancelled("Booking is already cancelled", booking_id=booking_id)
            placement = WAITLISTED if locked.is_waitlisted else CONFIRMED
            await tx.cancel_booking(locked, now)
            if placement == WAITLISTED:
                await tx.compact_waitlist()
            return locked, placement

        cancelled, placement = await self.store.run_in_slot(booking.slot_id, cancel)
        booking_cancellations.labels(placement=placement).inc()
        logger.info(
            "booking_cancelled",
            booking_id=booking_id,
            slot_id=cancelled.slot_id,
            placement=placement,
        )

        promoted: list[Booking] = []
        if placement == CONFIRMED:
            promoted = await self.promoter.on_capacity_freed(cancelled.slot_id)
        return CancellationResult(booking=cancelled, promoted=promoted)

    async def set_slot_capacity(self, slot_id: int, capacity: int) -> CapacityChangeResult:
        if capacity < 0:
            raise InvalidCapacity("Capacity cannot be negative", slot_id=slot_id)

        async def resize(tx: SlotTransaction) -> tuple[Slot, int]:
            if tx.slot.is_cancelled:
                raise SlotCancelled("This time slot has been cancelled", slot_id=slot_id)
            confirmed = await tx.confirmed_count()
            if capacity < confirmed:
                raise CapacityBelowConfirmed(
                    f"Capacity {capacity} is below the {confirmed} confirmed bookings",
                    slot_id=slot_id,
                    confirmed=confirmed,
                )
            previous = tx.slot.capacity
            if capacity != previous:
                await tx.set_capacity(capacity)
            return tx.slot, previous

        slot, previous = await self.store.run_in_slot(slot_id, resize)
        logger.info("slot_capacity_changed", slot_id=slot_id, previous=previous, capacity=capacity)

        promoted: list[Booking] = []
        if capacity > previous:
            promoted = await self.promoter.on_capacity_freed(slot_id)
        return CapacityChangeResult(slot=slot, promoted=promoted)

    async def cancel_slot(self, slot_id: int) -> Slot:
        """Flag the slot cancelled. Existing bookings are left as they are."""

        async def cancel(tx: SlotTransaction) -> Slot:
            if tx.slot.is_cancelled:
                return tx.slot
            return await tx.cancel_slot()

        slot = await self.store.run_in_slot(slot_id, cancel)
        logger.info("slot_cancelled", slot_id=slot_id)
        return slot

    async def slot_summary(self, slot_id: int) -> SlotSummary:
        slot = await self.store.get_slot(slot_id)
        confirmed, waitlisted = await self.store.slot_counts(slot_id)
        return SlotSummary(
            slot=SlotResponse.model_validate(slot),
            confirmed_count=confirmed,
            waitlist_count=waitlisted,
            capacity=capacity_snapshot(confirmed, slot.capacity),
        )

    async def event_attendance_summary(self, event_id: int) -> EventAttendanceSummary:
        await self.store.get_event(event_id)
        counts = await self.store.event_attendance_counts(event_id, self._clock())
        marked = counts["attended"] + counts["no_show"]
        return EventAttendanceSummary(
            event_id=event_id,
            sessions=counts["sessions"],
            bookings=counts["bookings"],
            attended=counts["attended"],
            no_show=counts["no_show"],
            unmarked=counts["bookings"] - marked,
            attendance_rate=round(counts["attended"] / marked, 3) if marked else None,
        )

    async def list_slot_bookings(self, slot_id: int, include_cancelled: bool = False) -> list[Booking]:
        await self.store.get_slot(slot_id)
        return await self.store.list_slot_bookings(slot_id, include_cancelled=include_cancelled)
