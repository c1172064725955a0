"""
Pydantic schemas for attendance marking.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from officehours.schemas.booking import BookingResponse


class AttendanceStatus(str, Enum):
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    CLEAR = "clear"


class AttendanceSource(str, Enum):
    MANUAL = "manual"
    MEET_SYNC = "meet_sync"
    BULK = "bulk"


class AttendanceOptions(BaseModel):
    send_no_show_email: bool = False
    # Manual correction after viewing current state; never set by Meet sync
    force: bool = False
    source: AttendanceSource = AttendanceSource.MANUAL


class AttendanceUpdate(BaseModel):
    status: AttendanceStatus
    send_no_show_email: bool = False
    force: bool = False


class AttendanceResponse(BaseModel):
    booking: BookingResponse
    changed: bool
    previous_state: str


class BulkAttendanceUpdate(BaseModel):
    booking_ids: list[int] = Field(..., min_length=1, max_length=500)
    status: AttendanceStatus
    send_no_show_email: bool = False


class BulkAttendanceItem(BaseModel):
    booking_id: int
    ok: bool
    changed: bool = False
    error: Optional[str] = None
    detail: Optional[str] = None


class BulkAttendanceResponse(BaseModel):
    succeeded: list[int]
    failed: list[int]
    results: list[BulkAttendanceItem]


class SyncAttendanceResponse(BaseModel):
    slot_id: int
    participants: int
    attended: int
    no_show: int
    skipped: int
