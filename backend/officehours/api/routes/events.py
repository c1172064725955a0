"""
Event endpoints: seeding and the per-event attendance dashboard.
"""

from fastapi import APIRouter, Depends, status

from officehours.api.deps import get_engine
from officehours.schemas.slot import EventCreate, EventResponse, EventAttendanceSummary
from officehours.services.engine import BookingEngine

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    engine: BookingEngine = Depends(get_engine),
):
    return await engine.create_event(
        event_data.name,
        event_data.host_email,
        waitlist_enabled=event_data.waitlist_enabled,
        waitlist_limit=event_data.waitlist_limit,
        no_show_emails_enabled=event_data.no_show_emails_enabled,
    )


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    return await engine.get_event(event_id)


@router.get("/{event_id}/attendance", response_model=EventAttendanceSummary)
async def event_attendance_endpoint(
    event_id: int,
    engine: BookingEngine = Depends(get_engine),
):
    """Attended / no-show / unmarked tallies over the event's ended sessions."""
    return await engine.event_attendance_summary(event_id)
