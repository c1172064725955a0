"""
Booking model representing an attendee's reservation against a slot.

Key design decisions:
- Partial unique index on (slot_id, email) for active bookings rejects
  duplicates even if two requests slip past the application check
- Partial unique index on (slot_id, waitlist_position) for active waitlisted
  bookings keeps queue positions unique
- cancelled_at soft-cancels; the row stays for history and analytics
- attended_at / no_show_at are mutually exclusive (CHECK)
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Index, CheckConstraint, JSON, text

from officehours.db.base import Base, TimestampMixin, UTCDateTime

UNMARKED = "unmarked"
ATTENDED = "attended"
NO_SHOW = "no_show"

ACTIVE_BOOKING = text("cancelled_at IS NULL")
ACTIVE_WAITLIST = text("is_waitlisted AND cancelled_at IS NULL")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False, index=True)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), nullable=False, index=True)  # stored lowercased
    question_responses = Column(JSON, nullable=False, default=dict)

    is_waitlisted = Column(Boolean, nullable=False, default=False)
    waitlist_position = Column(Integer, nullable=True)
    promoted_from_waitlist_at = Column(UTCDateTime(), nullable=True)

    attended_at = Column(UTCDateTime(), nullable=True)
    no_show_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    feedback_rating = Column(Integer, nullable=True)
    feedback_comment = Column(String(2000), nullable=True)
    feedback_submitted_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "attended_at IS NULL OR no_show_at IS NULL",
            name="check_booking_attendance_exclusive",
        ),
        CheckConstraint(
            "(is_waitlisted AND waitlist_position IS NOT NULL) OR (NOT is_waitlisted AND waitlist_position IS NULL)",
            name="check_booking_waitlist_position",
        ),
        CheckConstraint(
            "feedback_rating IS NULL OR (feedback_rating >= 1 AND feedback_rating <= 5)",
            name="check_booking_feedback_rating",
        ),
        Index(
            "uq_bookings_slot_email_active",
            "slot_id",
            "email",
            unique=True,
            postgresql_where=ACTIVE_BOOKING,
            sqlite_where=ACTIVE_BOOKING,
        ),
        Index(
            "uq_bookings_slot_waitlist_position",
            "slot_id",
            "waitlist_position",
            unique=True,
            postgresql_where=ACTIVE_WAITLIST,
            sqlite_where=ACTIVE_WAITLIST,
        ),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def placement(self) -> str:
        return "waitlisted" if self.is_waitlisted else "confirmed"

    @property
    def attendance_state(self) -> str:
        if self.attended_at is not None:
            return ATTENDED
        if self.no_show_at is not None:
            return NO_SHOW
        return UNMARKED

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, slot={self.slot_id}, email={self.email}, "
            f"placement={self.placement}, attendance={self.attendance_state})>"
        )
