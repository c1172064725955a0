"""
Pydantic schemas for events, slots and the dashboard read surface.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, model_validator


class EventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    host_email: EmailStr
    waitlist_enabled: bool = True
    waitlist_limit: Optional[int] = Field(None, ge=0)
    no_show_emails_enabled: bool = True


class EventResponse(BaseModel):
    id: int
    name: str
    host_email: str
    waitlist_enabled: bool
    waitlist_limit: Optional[int]
    no_show_emails_enabled: bool

    model_config = {"from_attributes": True}


class SlotCreate(BaseModel):
    event_id: int
    start_time: datetime
    end_time: datetime
    capacity: int = Field(..., ge=0, le=10000)
    meeting_link: Optional[str] = Field(None, max_length=500)
    recording_link: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_window(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must include a timezone")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SlotResponse(BaseModel):
    id: int
    event_id: int
    start_time: datetime
    end_time: datetime
    capacity: int
    is_cancelled: bool
    meeting_link: Optional[str]
    recording_link: Optional[str]

    model_config = {"from_attributes": True}


class CapacityUpdate(BaseModel):
    capacity: int = Field(..., ge=0, le=10000)


class CapacitySnapshot(BaseModel):
    capacity: int
    confirmed: int
    remaining: int
    percent_full: float
    is_full: bool

    model_config = {"frozen": True}


class SlotSummary(BaseModel):
    slot: SlotResponse
    confirmed_count: int
    waitlist_count: int
    capacity: CapacitySnapshot


class CapacityUpdateResponse(BaseModel):
    slot: SlotResponse
    promoted_booking_ids: list[int]


class EventAttendanceSummary(BaseModel):
    event_id: int
    sessions: int
    bookings: int
    attended: int
    no_show: int
    unmarked: int
    attendance_rate: Optional[float]
