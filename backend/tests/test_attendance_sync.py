"""
Tests for automated attendance from conference participant reports.
"""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from officehours.schemas.attendance import AttendanceOptions, AttendanceStatus
from officehours.services.attendance_sync import match_participants
from officehours.services.interfaces.meet_participants import (
    MeetParticipant,
    NullParticipantSource,
    ParticipantsUnavailable,
)
from conftest import attendee, make_slot


def participant(email, minutes):
    return MeetParticipant(email=email, display_name=None, minutes_present=minutes)


async def book(engine, slot, names):
    return {name: (await engine.request_booking(slot.id, attendee(name))).booking for name in names}


class TestMatchParticipants:
    def test_threshold_and_case(self):
        bookings = [SimpleNamespace(id=1, email="ada@example.com"), SimpleNamespace(id=2, email="bo@example.com")]
        participants = [participant("ADA@example.com", 5), participant("bo@example.com", 4.5)]

        decisions = match_participants(participants, bookings, min_minutes=5)

        assert decisions == {1: AttendanceStatus.ATTENDED, 2: AttendanceStatus.NO_SHOW}

    def test_rejoins_accumulate(self):
        bookings = [SimpleNamespace(id=1, email="ada@example.com")]
        participants = [participant("ada@example.com", 3), participant("ada@example.com", 3)]

        assert match_participants(participants, bookings, 5) == {1: AttendanceStatus.ATTENDED}

    def test_anonymous_participants_ignored(self):
        bookings = [SimpleNamespace(id=1, email="ada@example.com")]
        assert match_participants([participant(None, 60)], bookings, 5) == {1: AttendanceStatus.NO_SHOW}


@pytest.mark.asyncio
async def test_sync_marks_unmarked_bookings(engine, slot, clock, participant_source):
    booked = await book(engine, slot, ["Ada", "Bo"])
    clock.advance(days=1, minutes=75)
    participant_source.by_slot[slot.id] = [participant("ada@example.com", 25)]

    result = await engine.sync_slot_attendance(slot.id)

    assert (result.attended, result.no_show, result.skipped) == (1, 1, 0)
    assert (await engine.get_booking(booked["Ada"].id)).attendance_state == "attended"
    assert (await engine.get_booking(booked["Bo"].id)).attendance_state == "no_show"
    history = await engine.attendance_history(booked["Ada"].id)
    assert [t.source for t in history] == ["meet_sync"]


@pytest.mark.asyncio
async def test_sync_never_overrides_host_marks(engine, slot, clock, participant_source):
    """A host marked Ada attended; the report says they never joined."""
    booked = await book(engine, slot, ["Ada", "Bo"])
    clock.advance(days=1, minutes=75)
    await engine.mark_attendance(booked["Ada"].id, AttendanceStatus.ATTENDED)
    participant_source.by_slot[slot.id] = [participant("bo@example.com", 30)]

    result = await engine.sync_slot_attendance(slot.id)

    assert (result.attended, result.no_show) == (1, 0)
    assert (await engine.get_booking(booked["Ada"].id)).attendance_state == "attended"


@pytest.mark.asyncio
async def test_sync_sends_no_emails(engine, slot, clock, participant_source, queue):
    await book(engine, slot, ["Ada"])
    clock.advance(days=1, minutes=75)

    await engine.sync_slot_attendance(slot.id)

    assert [i.type.value for i in queue.intents] == ["crm_sync"]


@pytest.mark.asyncio
async def test_run_only_covers_window(engine, office_hours, clock, participant_source):
    in_window = await make_slot(engine, office_hours, capacity=1, meeting_link="https://meet/a")
    too_recent = await make_slot(
        engine, office_hours, capacity=1, meeting_link="https://meet/b",
        start_time=in_window.start_time + timedelta(minutes=45),
    )
    no_link = await make_slot(engine, office_hours, capacity=1)
    for target in (in_window, too_recent, no_link):
        await engine.request_booking(target.id, attendee("Ada"))

    # in_window ended 60 minutes ago, too_recent 15 minutes ago
    clock.now = in_window.end_time + timedelta(minutes=60)
    results = await engine.run_attendance_sync()

    assert [r.slot_id for r in results] == [in_window.id]
    assert results[0].no_show == 1


@pytest.mark.asyncio
async def test_run_continues_past_unavailable_slot(engine, office_hours, clock, participant_source):
    first = await make_slot(engine, office_hours, capacity=1, meeting_link="https://meet/a")
    second = await make_slot(
        engine, office_hours, capacity=1, meeting_link="https://meet/b",
        start_time=first.start_time + timedelta(minutes=5),
    )
    for target in (first, second):
        await engine.request_booking(target.id, attendee("Ada"))

    original = participant_source.participants

    async def flaky(slot):
        if slot.id == first.id:
            raise ParticipantsUnavailable("no recording")
        return await original(slot)

    participant_source.participants = flaky
    clock.now = second.end_time + timedelta(minutes=45)

    results = await engine.run_attendance_sync()

    assert [r.slot_id for r in results] == [second.id]


@pytest.mark.asyncio
async def test_null_source_never_marks_everyone_absent(engine, slot, clock):
    booked = await book(engine, slot, ["Ada"])
    clock.advance(days=1, minutes=75)
    engine.attendance_sync.source = NullParticipantSource()

    with pytest.raises(ParticipantsUnavailable):
        await engine.sync_slot_attendance(slot.id)
    assert (await engine.get_booking(booked["Ada"].id)).attendance_state == "unmarked"


@pytest.mark.asyncio
async def test_slot_without_unmarked_bookings_skips_provider(engine, slot, clock):
    booked = await book(engine, slot, ["Ada"])
    clock.advance(days=1, minutes=75)
    await engine.mark_attendance(booked["Ada"].id, AttendanceStatus.NO_SHOW, AttendanceOptions())
    engine.attendance_sync.source = NullParticipantSource()

    result = await engine.sync_slot_attendance(slot.id)
    assert result.participants == 0


@pytest.mark.asyncio
async def test_run_continues_past_provider_transport_error(engine, office_hours, clock, participant_source):
    first = await make_slot(engine, office_hours, capacity=1, meeting_link="https://meet/a")
    second = await make_slot(
        engine, office_hours, capacity=1, meeting_link="https://meet/b",
        start_time=first.start_time + timedelta(minutes=5),
    )
    for target in (first, second):
        await engine.request_booking(target.id, attendee("Ada"))

    original = participant_source.participants

    async def failing_upstream(slot):
        if slot.id == first.id:
            raise ConnectionError("provider 502")
        return await original(slot)

    participant_source.participants = failing_upstream
    clock.now = second.end_time + timedelta(minutes=45)

    results = await engine.run_attendance_sync()

    assert [r.slot_id for r in results] == [second.id]
    assert results[0].no_show == 1
