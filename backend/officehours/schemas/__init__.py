from officehours.schemas.booking import (
    AttendeeInfo, BookingCreate, BookingResponse, BookingCreateResponse,
    BookingCancelResponse, FeedbackCreate,
)
from officehours.schemas.slot import (
    EventCreate, EventResponse, SlotCreate, SlotResponse, CapacityUpdate,
    CapacitySnapshot, SlotSummary, CapacityUpdateResponse, EventAttendanceSummary,
)
from officehours.schemas.attendance import (
    AttendanceStatus, AttendanceSource, AttendanceOptions, AttendanceUpdate,
    AttendanceResponse, BulkAttendanceUpdate, BulkAttendanceItem,
    BulkAttendanceResponse, SyncAttendanceResponse,
)
from officehours.schemas.attendee import (
    SessionHistory, AttendeeContext, BatchContextRequest, BatchContextResponse,
)
from officehours.schemas.intent import IntentType, SideEffectIntent

__all__ = [
    "AttendeeInfo", "BookingCreate", "BookingResponse", "BookingCreateResponse",
    "BookingCancelResponse", "FeedbackCreate",
    "EventCreate", "EventResponse", "SlotCreate", "SlotResponse", "CapacityUpdate",
    "CapacitySnapshot", "SlotSummary", "CapacityUpdateResponse", "EventAttendanceSummary",
    "AttendanceStatus", "AttendanceSource", "AttendanceOptions", "AttendanceUpdate",
    "AttendanceResponse", "BulkAttendanceUpdate", "BulkAttendanceItem",
    "BulkAttendanceResponse", "SyncAttendanceResponse",
    "SessionHistory", "AttendeeContext", "BatchContextRequest", "BatchContextResponse",
    "IntentType", "SideEffectIntent",
]
