"""
Audit log of attendance state transitions.

One row per recorded transition. A forced correction from attended to
no-show is two rows (attended -> unmarked, unmarked -> no_show).
"""

from sqlalchemy import Column, Integer, String, ForeignKey

from officehours.db.base import Base, UTCDateTime, utcnow


class AttendanceTransition(Base):
    __tablename__ = "attendance_transitions"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    from_state = Column(String(20), nullable=False)
    to_state = Column(String(20), nullable=False)
    source = Column(String(20), nullable=False)  # manual, meet_sync, bulk
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<AttendanceTransition(booking={self.booking_id}, {self.from_state}->{self.to_state}, source={self.source})>"
