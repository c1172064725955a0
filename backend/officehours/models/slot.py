"""
Slot model: a bookable time window with a fixed capacity.

Key design decisions:
- Confirmed-seat usage is never denormalized onto the slot; it is always
  counted from bookings so promotion state derives from stored rows only
- `version` is bumped by every per-slot critical section (compare-and-set)
- Cancellation is a soft flag; slots referenced by bookings are never deleted
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Index, CheckConstraint

from officehours.db.base import Base, TimestampMixin, UTCDateTime


class Slot(Base, TimestampMixin):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)
    capacity = Column(Integer, nullable=False)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    meeting_link = Column(String(500), nullable=True)
    recording_link = Column(String(500), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="check_slot_capacity_non_negative"),
        CheckConstraint("end_time > start_time", name="check_slot_window"),
        Index("ix_slots_event_start", "event_id", "start_time"),
        Index("ix_slots_end_time", "end_time"),
    )

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, event={self.event_id}, capacity={self.capacity}, cancelled={self.is_cancelled})>"
