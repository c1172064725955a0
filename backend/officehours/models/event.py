"""
Event (meeting type) model.

Only the fields the booking engine reads live here: waitlist policy and
no-show email policy. Generic event settings are owned elsewhere.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint

from officehours.db.base import Base, TimestampMixin


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    host_email = Column(String(255), nullable=False)

    waitlist_enabled = Column(Boolean, nullable=False, default=True)
    # NULL means the waitlist is unbounded
    waitlist_limit = Column(Integer, nullable=True)
    no_show_emails_enabled = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("waitlist_limit IS NULL OR waitlist_limit >= 0", name="check_waitlist_limit_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name={self.name})>"
