"""Initial schema: events, slots, bookings, attendance transitions.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Events table (meeting types)
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("host_email", sa.String(255), nullable=False),
        sa.Column("waitlist_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("waitlist_limit", sa.Integer(), nullable=True),
        sa.Column("no_show_emails_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("waitlist_limit IS NULL OR waitlist_limit >= 0", name="check_waitlist_limit_non_negative"),
    )
    op.create_index("ix_events_id", "events", ["id"])

    # Slots table
    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("meeting_link", sa.String(500), nullable=True),
        sa.Column("recording_link", sa.String(500), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("capacity >= 0", name="check_slot_capacity_non_negative"),
        sa.CheckConstraint("end_time > start_time", name="check_slot_window"),
    )
    op.create_index("ix_slots_id", "slots", ["id"])
    op.create_index("ix_slots_event_id", "slots", ["event_id"])
    # Booking pages list an event's upcoming slots by start time
    op.create_index("ix_slots_event_start", "slots", ["event_id", "start_time"])
    # Attendance sync and reconciliation scan slots by end time
    op.create_index("ix_slots_end_time", "slots", ["end_time"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slots.id"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=sa.text("''")),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("question_responses", sa.JSON(), nullable=False),
        sa.Column("is_waitlisted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("promoted_from_waitlist_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("feedback_rating", sa.Integer(), nullable=True),
        sa.Column("feedback_comment", sa.String(2000), nullable=True),
        sa.Column("feedback_submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("attended_at IS NULL OR no_show_at IS NULL", name="check_booking_attendance_exclusive"),
        sa.CheckConstraint(
            "(is_waitlisted AND waitlist_position IS NOT NULL) OR (NOT is_waitlisted AND waitlist_position IS NULL)",
            name="check_booking_waitlist_position",
        ),
        sa.CheckConstraint(
            "feedback_rating IS NULL OR (feedback_rating >= 1 AND feedback_rating <= 5)",
            name="check_booking_feedback_rating",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_slot_id", "bookings", ["slot_id"])
    op.create_index("ix_bookings_email", "bookings", ["email"])
    # One active booking per attendee per slot; backs up the in-transaction check
    op.create_index(
        "uq_bookings_slot_email_active",
        "bookings",
        ["slot_id", "email"],
        unique=True,
        postgresql_where=sa.text("cancelled_at IS NULL"),
    )
    # Waitlist positions unique among active waitlisted bookings of a slot
    op.create_index(
        "uq_bookings_slot_waitlist_position",
        "bookings",
        ["slot_id", "waitlist_position"],
        unique=True,
        postgresql_where=sa.text("is_waitlisted AND cancelled_at IS NULL"),
    )

    # Attendance audit log
    op.create_table(
        "attendance_transitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("from_state", sa.String(20), nullable=False),
        sa.Column("to_state", sa.String(20), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_attendance_transitions_id", "attendance_transitions", ["id"])
    op.create_index("ix_attendance_transitions_booking_id", "attendance_transitions", ["booking_id"])


def downgrade() -> None:
    op.drop_table("attendance_transitions")
    op.drop_index("uq_bookings_slot_waitlist_position", table_name="bookings")
    op.drop_index("uq_bookings_slot_email_active", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("slots")
    op.drop_table("events")
