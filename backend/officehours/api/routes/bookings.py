"""
Booking endpoints: capacity-safe booking requests, cancellation, attendance
marking and feedback.
"""

from fastapi import APIRouter, Depends, status

from officehours.api.deps import get_engine
from officehours.schemas.attendance import (
    AttendanceOptions,
    AttendanceResponse,
    AttendanceSource,
    AttendanceUpdate,
    BulkAttendanceResponse,
    BulkAttendanceUpdate,
)
from officehours.schemas.booking import (
    AttendeeInfo,
    BookingCancelResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingResponse,
    FeedbackCreate,
)
from officehours.services.engine import BookingEngine

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    engine: BookingEngine = Depends(get_engine),
):
    """
    Book a slot.

    Confirmed while seats remain, otherwise placed on the waitlist. If the
    slot keeps changing underneath the request it retries and finally
    returns 409 slot_conflict.
    """
    attendee = AttendeeInfo.model_validate(booking_data.model_dump(exclude={"slot_id"}))
    result = await engine.request_booking(booking_data.slot_id, attendee)
    return BookingCreateResponse(
        booking_id=result.booking.id,
        placement=result.placement,
        waitlist_position=result.booking.waitlist_position,
        booking=BookingResponse.model_validate(result.booking),
    )


@router.post("/attendance/bulk", response_model=BulkAttendanceResponse)
async def bulk_attendance(
    update: BulkAttendanceUpdate,
    engine: BookingEngine = Depends(get_engine),
):
    """Mark many bookings at once; each id succeeds or fails on its own."""
    options = AttendanceOptions(
        send_no_show_email=update.send_no_show_email,
        source=AttendanceSource.BULK,
    )
    return await engine.bulk_mark_attendance(update.booking_ids, update.status, options)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    return await engine.get_booking(booking_id)


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    """Cancel a booking. A freed seat goes to the head of the waitlist."""
    result = await engine.cancel_booking(booking_id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=result.booking.id,
        promoted_booking_ids=[b.id for b in result.promoted],
    )


@router.put("/{booking_id}/attendance", response_model=AttendanceResponse)
async def mark_attendance(
    booking_id: int,
    update: AttendanceUpdate,
    engine: BookingEngine = Depends(get_engine),
):
    options = AttendanceOptions(
        send_no_show_email=update.send_no_show_email,
        force=update.force,
        source=AttendanceSource.MANUAL,
    )
    result = await engine.mark_attendance(booking_id, update.status, options)
    return AttendanceResponse(
        booking=BookingResponse.model_validate(result.booking),
        changed=result.changed,
        previous_state=result.previous_state,
    )


@router.post("/{booking_id}/feedback", response_model=BookingResponse)
async def submit_feedback(
    booking_id: int,
    feedback: FeedbackCreate,
    engine: BookingEngine = Depends(get_engine),
):
    return await engine.submit_feedback(booking_id, feedback.rating, feedback.comment)
