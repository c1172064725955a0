"""
Batch attendee context for the host dashboard.
"""

from fastapi import APIRouter, Depends

from officehours.api.deps import get_engine
from officehours.schemas.attendee import BatchContextRequest, BatchContextResponse
from officehours.services.engine import BookingEngine

router = APIRouter(prefix="/attendees", tags=["Attendees"])


@router.post("/context", response_model=BatchContextResponse)
async def batch_context(
    request: BatchContextRequest,
    engine: BookingEngine = Depends(get_engine),
):
    """
    CRM enrichment and session history for up to 200 attendee emails.
    Served from a 10 minute cache; keys in the response are normalized emails.
    """
    contacts = await engine.attendee_context(request.emails)
    return BatchContextResponse(contacts=contacts)
