"""
WaitlistPromoter: fills freed confirmed seats from the waitlist.

Called after anything that can free a seat (a confirmed booking cancelled, a
slot's capacity raised) and by the reconciliation sweep.

Every decision is recomputed from stored rows inside the slot's critical
section: free = capacity - confirmed. Nothing is carried in memory between
calls, so a promotion run interrupted by a fault is finished by the next call,
and calling twice in a row is the same as calling once.
"""

from datetime import datetime
from typing import Callable, Optional

from officehours.core.errors import BookingEngineError
from officehours.core.logging import get_logger
from officehours.core.metrics import waitlist_promotions
from officehours.db.base import utcnow
from officehours.models import Booking
from officehours.schemas.intent import IntentType, SideEffectIntent
from officehours.services.dispatcher_service import SideEffectDispatcher
from officehours.services.slot_store import SlotStore, SlotTransaction

logger = get_logger(__name__)


class WaitlistPromoter:
    def __init__(
        self,
        store: SlotStore,
        dispatcher: SideEffectDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self._clock = clock

    async def on_capacity_freed(self, slot_id: int) -> list[Booking]:
        """
        Promote waitlisted bookings, lowest position first, into free seats.
        Cancelled and already-started slots promote nobody.
        """
        now = self._clock()

        async def promote(tx: SlotTransaction) -> list[Booking]:
            if tx.slot.is_cancelled or tx.slot.start_time <= now:
                return []
            free_seats = tx.slot.capacity - await tx.confirmed_count()
            promoted: list[Booking] = []
            while free_seats > 0:
                candidate = await tx.next_waitlisted()
                if candidate is None:
                    break
                promoted.append(await tx.promote(candidate, now))
                free_seats -= 1
            if promoted:
                await tx.compact_waitlist()
            return promoted

        promoted = await self.store.run_in_slot(slot_id, promote)
        if not promoted:
            return []

        waitlist_promotions.inc(len(promoted))
        for booking in promoted:
            logger.info("waitlist_promoted", booking_id=booking.id, slot_id=slot_id)

        await self.dispatcher.emit_all(
            SideEffectIntent(
                type=IntentType.WAITLIST_PROMOTED,
                booking_id=booking.id,
                payload={
                    "slot_id": slot_id,
                    "email": booking.email,
                    "first_name": booking.first_name,
                    "promoted_at": now.isoformat(),
                },
            )
            for booking in promoted
        )
        return promoted

    async def reconcile(self, now: Optional[datetime] = None) -> dict:
        """
        Sweep live, not-yet-started slots that still have a waitlist and
        promote into any free seats. One failing slot does not stop the sweep.
        """
        now = now or self._clock()
        slot_ids = await self.store.slots_pending_promotion(now)
        promoted = 0
        failed: list[int] = []
        for slot_id in slot_ids:
            try:
                promoted += len(await self.on_capacity_freed(slot_id))
            except BookingEngineError as e:
                failed.append(slot_id)
                logger.error("waitlist_reconcile_failed", slot_id=slot_id, code=e.code)

        logger.info(
            "waitlist_reconciled",
            slots_checked=len(slot_ids),
            promoted=promoted,
            failed=len(failed),
        )
        return {"slots_checked": len(slot_ids), "promoted": promoted, "failed_slot_ids": failed}
