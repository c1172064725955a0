"""
Tests for the attendance state machine, bulk marking and feedback.
"""

import asyncio

import pytest
import pytest_asyncio

from officehours.core.errors import (
    AlreadyMarked,
    BookingCancelled,
    BookingNotFound,
    BookingWaitlisted,
    FeedbackAlreadySubmitted,
    InvalidFeedback,
    SessionNotEnded,
    SlotCancelled,
)
from officehours.schemas.attendance import AttendanceOptions, AttendanceSource, AttendanceStatus
from officehours.schemas.intent import IntentType
from officehours.services.attendance_service import plan_transitions
from conftest import attendee, make_slot

ATTENDED = AttendanceStatus.ATTENDED
NO_SHOW = AttendanceStatus.NO_SHOW
CLEAR = AttendanceStatus.CLEAR


@pytest.fixture
def after_session(clock):
    """Move the clock past the end of the default slot."""
    def advance():
        clock.advance(days=1, hours=1)
    return advance


@pytest_asyncio.fixture
async def booking(engine, slot, after_session):
    result = await engine.request_booking(slot.id, attendee("Ada"))
    after_session()
    return result.booking


@pytest.mark.asyncio
async def test_mark_attended(engine, booking, queue, clock):
    result = await engine.mark_attendance(booking.id, ATTENDED)

    assert result.changed
    assert result.previous_state == "unmarked"
    assert result.booking.attended_at == clock.now
    assert result.booking.no_show_at is None

    crm = queue.of_type(IntentType.CRM_SYNC)
    assert len(crm) == 1
    assert crm[0].payload["outcome"] == "COMPLETED"
    assert crm[0].payload["source"] == "manual"


@pytest.mark.asyncio
async def test_mark_no_show_sends_email_when_asked(engine, booking, queue):
    await engine.mark_attendance(booking.id, NO_SHOW, AttendanceOptions(send_no_show_email=True))

    assert queue.of_type(IntentType.CRM_SYNC)[0].payload["outcome"] == "NO_SHOW"
    emails = queue.of_type(IntentType.NO_SHOW_EMAIL)
    assert len(emails) == 1
    assert emails[0].payload["email"] == "ada@example.com"
    assert emails[0].payload["event_name"] == "Product Office Hours"


@pytest.mark.asyncio
async def test_no_show_email_respects_event_setting(engine, clock, queue):
    event = await engine.create_event("Quiet Hours", "host@example.com", no_show_emails_enabled=False)
    slot = await make_slot(engine, event, capacity=1)
    result = await engine.request_booking(slot.id, attendee("Ada"))
    clock.advance(days=2)

    await engine.mark_attendance(result.booking.id, NO_SHOW, AttendanceOptions(send_no_show_email=True))

    assert queue.of_type(IntentType.NO_SHOW_EMAIL) == []
    assert len(queue.of_type(IntentType.CRM_SYNC)) == 1


@pytest.mark.asyncio
async def test_no_show_without_email_flag(engine, booking, queue):
    await engine.mark_attendance(booking.id, NO_SHOW)
    assert queue.of_type(IntentType.NO_SHOW_EMAIL) == []


@pytest.mark.asyncio
async def test_attended_to_no_show_rejected_without_force(engine, booking, queue):
    """Attended, then an automated no-show without override is refused."""
    first = await engine.mark_attendance(booking.id, ATTENDED)

    with pytest.raises(AlreadyMarked):
        await engine.mark_attendance(
            booking.id, NO_SHOW, AttendanceOptions(source=AttendanceSource.MEET_SYNC)
        )

    stored = await engine.get_booking(booking.id)
    assert stored.attended_at == first.booking.attended_at
    assert stored.no_show_at is None
    assert len(queue.intents) == 1


@pytest.mark.asyncio
async def test_forced_correction_records_two_transitions(engine, booking):
    await engine.mark_attendance(booking.id, ATTENDED)

    result = await engine.mark_attendance(booking.id, NO_SHOW, AttendanceOptions(force=True))

    assert result.changed
    assert result.previous_state == "attended"
    assert result.booking.attended_at is None
    assert result.booking.no_show_at is not None

    history = await engine.attendance_history(booking.id)
    assert [(t.from_state, t.to_state) for t in history] == [
        ("unmarked", "attended"),
        ("attended", "unmarked"),
        ("unmarked", "no_show"),
    ]


@pytest.mark.asyncio
async def test_same_state_unforced_rejected(engine, booking):
    await engine.mark_attendance(booking.id, ATTENDED)

    with pytest.raises(AlreadyMarked):
        await engine.mark_attendance(booking.id, ATTENDED)


@pytest.mark.asyncio
async def test_same_state_forced_is_noop(engine, booking, queue):
    first = await engine.mark_attendance(booking.id, ATTENDED)

    again = await engine.mark_attendance(booking.id, ATTENDED, AttendanceOptions(force=True))

    assert not again.changed
    assert again.booking.attended_at == first.booking.attended_at
    assert len(await engine.attendance_history(booking.id)) == 1
    assert len(queue.intents) == 1


@pytest.mark.asyncio
async def test_clear_then_remark(engine, booking, queue):
    await engine.mark_attendance(booking.id, NO_SHOW)

    cleared = await engine.mark_attendance(booking.id, CLEAR)
    assert cleared.changed
    assert cleared.booking.attendance_state == "unmarked"
    assert queue.of_type(IntentType.CRM_SYNC)[-1].payload["outcome"] == "SCHEDULED"

    remarked = await engine.mark_attendance(booking.id, ATTENDED)
    assert remarked.booking.attendance_state == "attended"


@pytest.mark.asyncio
async def test_clear_on_unmarked_is_noop(engine, booking, queue):
    result = await engine.mark_attendance(booking.id, CLEAR)

    assert not result.changed
    assert queue.intents == []
    assert await engine.attendance_history(booking.id) == []


@pytest.mark.asyncio
async def test_clear_allowed_before_session_ends(engine, slot):
    result = await engine.request_booking(slot.id, attendee("Ada"))
    cleared = await engine.mark_attendance(result.booking.id, CLEAR)
    assert not cleared.changed


@pytest.mark.asyncio
async def test_marking_before_session_end_rejected(engine, slot):
    result = await engine.request_booking(slot.id, attendee("Ada"))

    with pytest.raises(SessionNotEnded):
        await engine.mark_attendance(result.booking.id, ATTENDED)


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_marked(engine, slot, after_session):
    result = await engine.request_booking(slot.id, attendee("Ada"))
    await engine.cancel_booking(result.booking.id)
    after_session()

    with pytest.raises(BookingCancelled):
        await engine.mark_attendance(result.booking.id, ATTENDED)


@pytest.mark.asyncio
async def test_waitlisted_booking_cannot_be_marked(engine, office_hours, after_session):
    slot = await make_slot(engine, office_hours, capacity=0)
    result = await engine.request_booking(slot.id, attendee("Ada"))
    after_session()

    with pytest.raises(BookingWaitlisted):
        await engine.mark_attendance(result.booking.id, ATTENDED)


@pytest.mark.asyncio
async def test_cancelled_slot_blocks_marking(engine, slot, booking):
    await engine.cancel_slot(slot.id)

    with pytest.raises(SlotCancelled):
        await engine.mark_attendance(booking.id, ATTENDED)


@pytest.mark.asyncio
async def test_unknown_booking(engine):
    with pytest.raises(BookingNotFound):
        await engine.mark_attendance(12345, ATTENDED)


@pytest.mark.asyncio
async def test_concurrent_marks_one_wins(engine, booking):
    results = await asyncio.gather(
        engine.mark_attendance(booking.id, ATTENDED),
        engine.mark_attendance(booking.id, NO_SHOW),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyMarked)

    stored = await engine.get_booking(booking.id)
    assert (stored.attended_at is None) != (stored.no_show_at is None)


@pytest.mark.asyncio
async def test_bulk_mark_reports_per_booking(engine, office_hours, after_session):
    """Ten bookings, two cancelled: eight marked, two report booking_cancelled."""
    slot = await make_slot(engine, office_hours, capacity=10)
    bookings = [
        (await engine.request_booking(slot.id, attendee(f"Guest{n}"))).booking for n in range(10)
    ]
    cancelled_ids = {bookings[3].id, bookings[7].id}
    for booking_id in cancelled_ids:
        await engine.cancel_booking(booking_id)
    after_session()

    result = await engine.bulk_mark_attendance([b.id for b in bookings], ATTENDED)

    assert len(result.succeeded) == 8
    assert set(result.failed) == cancelled_ids
    failures = [item for item in result.results if not item.ok]
    assert {item.error for item in failures} == {"booking_cancelled"}

    summary = await engine.event_attendance_summary(office_hours.id)
    assert summary.attended == 8
    assert summary.unmarked == 0
    assert summary.attendance_rate == 1.0


@pytest.mark.asyncio
async def test_bulk_mark_dedups_and_tolerates_unknown(engine, booking):
    result = await engine.bulk_mark_attendance([booking.id, booking.id, 9999], NO_SHOW)

    assert result.succeeded == [booking.id]
    assert result.failed == [9999]
    assert [item.booking_id for item in result.results] == [booking.id, 9999]
    assert result.results[1].error == "booking_not_found"
    history = await engine.attendance_history(booking.id)
    assert [t.source for t in history] == ["bulk"]


@pytest.mark.asyncio
async def test_event_attendance_summary(engine, office_hours, after_session):
    slot = await make_slot(engine, office_hours, capacity=3)
    ids = [(await engine.request_booking(slot.id, attendee(n))).booking.id for n in ["Ada", "Bo", "Cy"]]
    after_session()
    await engine.mark_attendance(ids[0], ATTENDED)
    await engine.mark_attendance(ids[1], NO_SHOW)

    summary = await engine.event_attendance_summary(office_hours.id)

    assert summary.sessions == 1
    assert summary.bookings == 3
    assert (summary.attended, summary.no_show, summary.unmarked) == (1, 1, 1)
    assert summary.attendance_rate == 0.5


@pytest.mark.asyncio
async def test_event_summary_without_marks(engine, office_hours):
    summary = await engine.event_attendance_summary(office_hours.id)
    assert summary.attendance_rate is None
    assert summary.sessions == 0


@pytest.mark.asyncio
async def test_feedback_write_once(engine, booking):
    stored = await engine.submit_feedback(booking.id, 5, "  Very helpful  ")
    assert stored.feedback_rating == 5
    assert stored.feedback_comment == "Very helpful"

    with pytest.raises(FeedbackAlreadySubmitted):
        await engine.submit_feedback(booking.id, 1)


@pytest.mark.asyncio
async def test_feedback_requires_ended_session(engine, slot):
    result = await engine.request_booking(slot.id, attendee("Ada"))

    with pytest.raises(SessionNotEnded):
        await engine.submit_feedback(result.booking.id, 4)


@pytest.mark.asyncio
async def test_feedback_rating_range(engine, booking):
    with pytest.raises(InvalidFeedback):
        await engine.submit_feedback(booking.id, 6)


class TestPlanTransitions:
    def test_unmarked_to_attended(self):
        assert plan_transitions("unmarked", "attended", force=False) == [("unmarked", "attended")]

    def test_clear(self):
        assert plan_transitions("no_show", "unmarked", force=False) == [("no_show", "unmarked")]

    def test_direct_flip_needs_force(self):
        with pytest.raises(AlreadyMarked):
            plan_transitions("attended", "no_show", force=False)

    def test_forced_flip_goes_through_unmarked(self):
        assert plan_transitions("no_show", "attended", force=True) == [
            ("no_show", "unmarked"),
            ("unmarked", "attended"),
        ]

    def test_noops(self):
        assert plan_transitions("unmarked", "unmarked", force=False) == []
        assert plan_transitions("attended", "attended", force=True) == []
