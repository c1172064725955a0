from officehours.models.event import Event
from officehours.models.slot import Slot
from officehours.models.booking import Booking
from officehours.models.attendance import AttendanceTransition

__all__ = ["Event", "Slot", "Booking", "AttendanceTransition"]
