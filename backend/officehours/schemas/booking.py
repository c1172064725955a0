"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, EmailStr, Field


class AttendeeInfo(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    question_responses: dict[str, Any] = Field(default_factory=dict)


class BookingCreate(AttendeeInfo):
    slot_id: int


class BookingResponse(BaseModel):
    id: int
    slot_id: int
    first_name: str
    last_name: str
    email: str
    placement: str
    is_waitlisted: bool
    waitlist_position: Optional[int]
    promoted_from_waitlist_at: Optional[datetime]
    attendance_state: str
    attended_at: Optional[datetime]
    no_show_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    feedback_rating: Optional[int]
    feedback_submitted_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCreateResponse(BaseModel):
    booking_id: int
    placement: str
    waitlist_position: Optional[int]
    booking: BookingResponse


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    promoted_booking_ids: list[int]


class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)
