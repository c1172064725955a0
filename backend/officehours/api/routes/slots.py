"""
Slot endpoints: seeding, capacity edits, cancellation and the host view.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from officehours.api.deps import get_engine
from officehours.core.logging import get_logger
from officehours.schemas.attendance import SyncAttendanceResponse
from officehours.schemas.booking import BookingResponse
from officehours.schemas.slot import (
    CapacityUpdate,
    CapacityUpdateResponse,
    SlotCreate,
    SlotResponse,
    SlotSummary,
)
from officehours.services.engine import BookingEngine
from officehours.services.interfaces.meet_participants import ParticipantsUnavailable

logger = get_logger(__name__)
router = APIRouter(prefix="/slots", tags=["Slots"])


@router.post("/", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot_endpoint(
    slot_data: SlotCreate,
    engine: BookingEngine = Depends(get_engine),
):
    return await engine.create_slot(
        slot_data.event_id,
        slot_data.start_time,
        slot_data.end_time,
        slot_data.capacity,
        meeting_link=slot_data.meeting_link,
        recording_link=slot_data.recording_link,
    )


@router.get("/{slot_id}", response_model=SlotSummary)
async def get_slot_endpoint(
    slot_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    """Slot with confirmed / waitlist counts and its capacity snapshot."""
    return await engine.slot_summary(slot_id)


@router.put("/{slot_id}/capacity", response_model=CapacityUpdateResponse)
async def set_capacity_endpoint(
    slot_id: int,
    update: CapacityUpdate,
    engine: BookingEngine = Depends(get_engine),
):
    """
    Change a slot's capacity. Raising it promotes from the waitlist; lowering
    it below the confirmed count is rejected.
    """
    result = await engine.set_slot_capacity(slot_id, update.capacity)
    return CapacityUpdateResponse(
        slot=SlotResponse.model_validate(result.slot),
        promoted_booking_ids=[b.id for b in result.promoted],
    )


@router.post("/{slot_id}/cancel", response_model=SlotResponse)
async def cancel_slot_endpoint(
    slot_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    return await engine.cancel_slot(slot_id)


@router.get("/{slot_id}/bookings", response_model=list[BookingResponse])
async def list_slot_bookings_endpoint(
    slot_id: int,
    include_cancelled: bool = Query(False),
    engine: BookingEngine = Depends(get_engine),
):
    """Confirmed bookings first, then the waitlist in queue order."""
    return await engine.list_slot_bookings(slot_id, include_cancelled=include_cancelled)


@router.post("/{slot_id}/sync-attendance", response_model=SyncAttendanceResponse)
async def sync_attendance_endpoint(
    slot_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    """Fill unmarked attendance from the conference participant report."""
    try:
        result = await engine.sync_slot_attendance(slot_id)
    except ParticipantsUnavailable as e:
        logger.warning("attendance_sync_unavailable", slot_id=slot_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Participant data is not available for this slot",
        )
    return SyncAttendanceResponse(
        slot_id=result.slot_id,
        participants=result.participants,
        attended=result.attended,
        no_show=result.no_show,
        skipped=result.skipped,
    )
