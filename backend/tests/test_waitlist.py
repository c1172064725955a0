"""
Tests for cancellation, capacity changes and waitlist promotion.
"""

import asyncio
from datetime import timedelta

import pytest

from officehours.core.errors import (
    BookingAlreadyCancelled,
    BookingNotFound,
    CapacityBelowConfirmed,
    InvalidCapacity,
    SlotCancelled,
)
from officehours.schemas.intent import IntentType
from conftest import attendee, make_slot


async def fill(engine, slot, names):
    return [await engine.request_booking(slot.id, attendee(name)) for name in names]


@pytest.mark.asyncio
async def test_cancel_confirmed_promotes_head_of_waitlist(engine, slot, queue):
    """Cancel A: C is promoted and the slot is back to two confirmed."""
    a, b, c = await fill(engine, slot, ["Ada", "Bo", "Cy"])

    result = await engine.cancel_booking(a.booking.id)

    assert [p.id for p in result.promoted] == [c.booking.id]
    promoted = await engine.get_booking(c.booking.id)
    assert not promoted.is_waitlisted
    assert promoted.waitlist_position is None
    assert promoted.promoted_from_waitlist_at is not None

    confirmed, waitlisted = await engine.store.slot_counts(slot.id)
    assert (confirmed, waitlisted) == (2, 0)

    intents = queue.of_type(IntentType.WAITLIST_PROMOTED)
    assert [i.booking_id for i in intents] == [c.booking.id]
    assert intents[0].payload["email"] == "cy@example.com"


@pytest.mark.asyncio
async def test_waitlist_compacted_after_promotion(engine, slot):
    a, *_ = await fill(engine, slot, ["Ada", "Bo", "Cy", "Di", "Ed"])

    await engine.cancel_booking(a.booking.id)

    waitlisted = [b for b in await engine.list_slot_bookings(slot.id) if b.is_waitlisted]
    assert [(b.first_name, b.waitlist_position) for b in waitlisted] == [("Di", 1), ("Ed", 2)]


@pytest.mark.asyncio
async def test_cancel_waitlisted_closes_gap_without_promotion(engine, slot, queue):
    _, _, c, d, e = await fill(engine, slot, ["Ada", "Bo", "Cy", "Di", "Ed"])

    result = await engine.cancel_booking(d.booking.id)

    assert result.promoted == []
    assert queue.of_type(IntentType.WAITLIST_PROMOTED) == []
    waitlisted = [b for b in await engine.list_slot_bookings(slot.id) if b.is_waitlisted]
    assert [(b.id, b.waitlist_position) for b in waitlisted] == [(c.booking.id, 1), (e.booking.id, 2)]


@pytest.mark.asyncio
async def test_on_capacity_freed_is_idempotent(engine, slot, queue):
    await fill(engine, slot, ["Ada", "Bo", "Cy"])

    first = await engine.on_capacity_freed(slot.id)
    second = await engine.on_capacity_freed(slot.id)

    assert first == []
    assert second == []
    confirmed, waitlisted = await engine.store.slot_counts(slot.id)
    assert (confirmed, waitlisted) == (2, 1)
    assert queue.intents == []


@pytest.mark.asyncio
async def test_concurrent_promotion_calls_promote_once(engine, slot, queue):
    _, _, c = await fill(engine, slot, ["Ada", "Bo", "Cy"])
    # Free a seat without going through set_slot_capacity's own promotion
    async with engine.store.slot_transaction(slot.id) as tx:
        await tx.set_capacity(3)

    results = await asyncio.gather(
        engine.on_capacity_freed(slot.id),
        engine.on_capacity_freed(slot.id),
    )

    assert sorted(len(r) for r in results) == [0, 1]
    assert len(queue.of_type(IntentType.WAITLIST_PROMOTED)) == 1
    assert not (await engine.get_booking(c.booking.id)).is_waitlisted


@pytest.mark.asyncio
async def test_raising_capacity_promotes(engine, slot):
    _, _, c, d, e = await fill(engine, slot, ["Ada", "Bo", "Cy", "Di", "Ed"])

    result = await engine.set_slot_capacity(slot.id, 4)

    assert [b.id for b in result.promoted] == [c.booking.id, d.booking.id]
    assert result.slot.capacity == 4
    remaining = await engine.get_booking(e.booking.id)
    assert remaining.waitlist_position == 1


@pytest.mark.asyncio
async def test_lowering_capacity_below_confirmed_rejected(engine, slot):
    await fill(engine, slot, ["Ada", "Bo"])

    with pytest.raises(CapacityBelowConfirmed):
        await engine.set_slot_capacity(slot.id, 1)
    assert (await engine.store.get_slot(slot.id)).capacity == 2


@pytest.mark.asyncio
async def test_lowering_capacity_to_confirmed_allowed(engine, office_hours):
    slot = await make_slot(engine, office_hours, capacity=5)
    await fill(engine, slot, ["Ada", "Bo"])

    result = await engine.set_slot_capacity(slot.id, 2)
    assert result.slot.capacity == 2
    assert result.promoted == []


@pytest.mark.asyncio
async def test_negative_capacity_rejected(engine, slot):
    with pytest.raises(InvalidCapacity):
        await engine.set_slot_capacity(slot.id, -1)


@pytest.mark.asyncio
async def test_double_cancel_rejected(engine, slot):
    a, = await fill(engine, slot, ["Ada"])
    await engine.cancel_booking(a.booking.id)

    with pytest.raises(BookingAlreadyCancelled):
        await engine.cancel_booking(a.booking.id)


@pytest.mark.asyncio
async def test_cancel_unknown_booking(engine):
    with pytest.raises(BookingNotFound):
        await engine.cancel_booking(999)


@pytest.mark.asyncio
async def test_cancelled_slot_freezes_bookings(engine, slot, queue):
    a, _, c = await fill(engine, slot, ["Ada", "Bo", "Cy"])
    await engine.cancel_slot(slot.id)

    with pytest.raises(SlotCancelled):
        await engine.cancel_booking(a.booking.id)
    with pytest.raises(SlotCancelled):
        await engine.set_slot_capacity(slot.id, 5)
    assert await engine.on_capacity_freed(slot.id) == []
    assert (await engine.get_booking(c.booking.id)).is_waitlisted


@pytest.mark.asyncio
async def test_cancel_slot_twice_is_harmless(engine, slot):
    await engine.cancel_slot(slot.id)
    cancelled = await engine.cancel_slot(slot.id)
    assert cancelled.is_cancelled


@pytest.mark.asyncio
async def test_reconcile_completes_missed_promotions(engine, office_hours, clock, queue):
    open_slot = await make_slot(engine, office_hours, capacity=1)
    past_slot = await make_slot(engine, office_hours, capacity=1, start_time=clock.now)
    for target in (open_slot, past_slot):
        await engine.request_booking(target.id, attendee("Ada"), allow_past=True)
        await engine.request_booking(target.id, attendee("Bo"), allow_past=True)
        # Seat freed by a writer that never ran promotion
        async with engine.store.slot_transaction(target.id) as tx:
            await tx.set_capacity(2)

    summary = await engine.reconcile_waitlists()

    assert summary == {"slots_checked": 1, "promoted": 1, "failed_slot_ids": []}
    assert (await engine.store.slot_counts(open_slot.id)) == (2, 0)
    # Started slots are left alone
    assert (await engine.store.slot_counts(past_slot.id)) == (1, 1)


@pytest.mark.asyncio
async def test_cancel_after_session_ended_promotes_nobody(engine, office_hours, clock, queue):
    slot = await make_slot(engine, office_hours, capacity=1)
    ada, cy = await fill(engine, slot, ["Ada", "Cy"])
    clock.now = slot.end_time + timedelta(hours=2)

    result = await engine.cancel_booking(ada.booking.id)

    assert result.promoted == []
    assert (await engine.get_booking(cy.booking.id)).is_waitlisted
    assert queue.of_type(IntentType.WAITLIST_PROMOTED) == []


@pytest.mark.asyncio
async def test_capacity_raise_on_started_slot_promotes_nobody(engine, slot, clock, queue):
    *_, cy = await fill(engine, slot, ["Ada", "Bo", "Cy"])
    clock.now = slot.start_time + timedelta(minutes=5)

    result = await engine.set_slot_capacity(slot.id, 3)

    assert result.slot.capacity == 3
    assert result.promoted == []
    assert (await engine.get_booking(cy.booking.id)).waitlist_position == 1
    assert queue.of_type(IntentType.WAITLIST_PROMOTED) == []
