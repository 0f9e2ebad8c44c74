import asyncio
from datetime import UTC, date

import pytest
from conftest import make_user
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.models.booking import Booking, BookingStatus
from app.models.reference import Subject, Teacher
from app.models.time_slot import SlotSource, TimeSlot
from app.services.errors import (
    BookingNotFound,
    DuplicateBooking,
    InvalidRequest,
    InvalidState,
    SlotBusy,
    SlotFull,
    SlotNotFound,
)
from app.services import reservation_service
from app.services.reservation_service import SlotLockRegistry, cancel, reserve, resolve_slot
from app.services.slot_service import count_confirmed_bookings, create_slot

DAY = date(2025, 6, 10)


async def _slot(session, start="10:00", end="11:00", capacity=1) -> TimeSlot:
    slot = await create_slot(session, DAY, start, end, capacity=capacity)
    await session.commit()
    return slot


async def test_reserve_persisted_slot(session, alice, locks):
    slot = await _slot(session)
    booking = await reserve(session, alice.id, str(slot.id), notes="first lesson", locks=locks)
    assert booking.id is not None
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.notes == "first lesson"
    assert await count_confirmed_bookings(session, slot.id) == 1
    assert len(locks) == 0


async def test_reserve_full_slot(session, alice, bob, locks):
    slot = await _slot(session)
    await reserve(session, alice.id, str(slot.id), locks=locks)
    with pytest.raises(SlotFull):
        await reserve(session, bob.id, str(slot.id), locks=locks)
    # a rejection does not discard what the session already holds
    assert bob.display_name == "Bob"
    assert await count_confirmed_bookings(session, slot.id) == 1


async def test_reserve_same_slot_twice_is_duplicate(session, alice, locks):
    slot = await _slot(session, capacity=3)
    await reserve(session, alice.id, str(slot.id), locks=locks)
    with pytest.raises(DuplicateBooking):
        await reserve(session, alice.id, str(slot.id), locks=locks)
    assert await count_confirmed_bookings(session, slot.id) == 1


@pytest.mark.parametrize("ref", ["999", "dynamic-2025-06-10-7", "nonsense", "dynamic-2025-02-30-0"])
async def test_unknown_slot_refs(session, alice, locks, ref):
    with pytest.raises(SlotNotFound):
        await reserve(session, alice.id, ref, locks=locks)


async def test_inactive_slot_cannot_be_booked(session, alice, locks):
    slot = await _slot(session)
    slot.is_active = False
    session.add(slot)
    await session.commit()
    with pytest.raises(SlotNotFound):
        await reserve(session, alice.id, str(slot.id), locks=locks)


async def test_date_must_match_slot(session, alice, locks):
    slot = await _slot(session)
    with pytest.raises(SlotNotFound):
        await reserve(session, alice.id, str(slot.id), on_date=date(2025, 6, 11), locks=locks)
    with pytest.raises(SlotNotFound):
        await reserve(session, alice.id, "dynamic-2025-06-10-0", on_date=date(2025, 6, 11), locks=locks)
    booking = await reserve(session, alice.id, str(slot.id), on_date=DAY, locks=locks)
    assert booking.time_slot_id == slot.id


async def test_synthetic_id_materializes_then_converges(session, alice, bob, locks):
    """First booking creates the row, the second hits the same row and is full."""
    booking = await reserve(session, alice.id, "dynamic-2025-06-10-2", locks=locks)
    slot = await session.get(TimeSlot, booking.time_slot_id)
    assert (slot.date, slot.start_time, slot.end_time) == (DAY, "13:00", "14:00")
    assert slot.max_capacity == 1
    assert slot.source == SlotSource.MATERIALIZED.value

    with pytest.raises(SlotFull):
        await reserve(session, bob.id, "dynamic-2025-06-10-2", locks=locks)
    rows = (await session.execute(select(func.count(TimeSlot.id)))).scalar_one()
    assert rows == 1


async def test_synthetic_id_reuses_existing_row(session, alice, locks):
    existing = await _slot(session, "13:00", "14:00", capacity=2)
    resolved = await resolve_slot(session, "dynamic-2025-06-10-2", locks=locks)
    assert resolved.id == existing.id
    booking = await reserve(session, alice.id, "dynamic-2025-06-10-2", locks=locks)
    assert booking.time_slot_id == existing.id


async def test_concurrent_reserves_for_last_seat(session, session_maker, locks):
    """N racing callers on a capacity-1 slot: exactly one wins."""
    slot = await _slot(session)
    users = [await make_user(session, f"U_race_{i}") for i in range(6)]

    async def attempt(user_id: int) -> str:
        async with session_maker() as s:
            try:
                await reserve(s, user_id, str(slot.id), locks=locks)
                return "ok"
            except SlotFull:
                return "full"

    results = await asyncio.gather(*(attempt(u.id) for u in users))
    assert results.count("ok") == 1
    assert results.count("full") == len(users) - 1
    assert await count_confirmed_bookings(session, slot.id) == 1


async def test_concurrent_reserves_on_unmaterialized_slot(session, session_maker, locks):
    users = [await make_user(session, f"U_dyn_{i}") for i in range(5)]

    async def attempt(user_id: int) -> str:
        async with session_maker() as s:
            try:
                await reserve(s, user_id, "dynamic-2025-06-10-4", locks=locks)
                return "ok"
            except SlotFull:
                return "full"

    results = await asyncio.gather(*(attempt(u.id) for u in users))
    assert sorted(results) == ["full"] * 4 + ["ok"]
    slots = (await session.execute(select(TimeSlot))).scalars().all()
    assert len(slots) == 1
    assert await count_confirmed_bookings(session, slots[0].id) == 1


async def test_cancel_restores_capacity(session, alice, bob, locks):
    """Round trip: book, cancel, occupancy back to where it was; the seat can be rebooked."""
    slot = await _slot(session)
    before = await count_confirmed_bookings(session, slot.id)
    booking = await reserve(session, alice.id, str(slot.id), locks=locks)

    cancelled = await cancel(session, alice.id, booking.id, locks=locks)
    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancelled_at is not None
    assert await count_confirmed_bookings(session, slot.id) == before

    again = await reserve(session, bob.id, str(slot.id), locks=locks)
    assert again.status == BookingStatus.CONFIRMED.value


async def test_cancel_twice_is_invalid_state(session, alice, locks):
    slot = await _slot(session)
    booking = await reserve(session, alice.id, str(slot.id), locks=locks)
    first = await cancel(session, alice.id, booking.id, locks=locks)
    await session.refresh(first)
    cancelled_at = first.cancelled_at

    with pytest.raises(InvalidState):
        await cancel(session, alice.id, booking.id, locks=locks)
    row = await session.get(Booking, booking.id)
    await session.refresh(row)
    assert row.status == BookingStatus.CANCELLED.value
    assert row.cancelled_at == cancelled_at


async def test_cancel_completed_booking_is_invalid_state(session, alice, locks):
    slot = await _slot(session)
    booking = await reserve(session, alice.id, str(slot.id), locks=locks)
    booking.status = BookingStatus.COMPLETED.value
    session.add(booking)
    await session.commit()
    with pytest.raises(InvalidState):
        await cancel(session, alice.id, booking.id, locks=locks)


async def test_cancel_someone_elses_booking(session, alice, bob, locks):
    slot = await _slot(session)
    booking = await reserve(session, alice.id, str(slot.id), locks=locks)
    with pytest.raises(BookingNotFound):
        await cancel(session, bob.id, booking.id, locks=locks)
    with pytest.raises(BookingNotFound):
        await cancel(session, alice.id, booking.id + 100, locks=locks)


async def test_simple_mode_rejects_teacher_subject(session, alice, locks):
    slot = await _slot(session)
    with pytest.raises(InvalidRequest):
        await reserve(session, alice.id, str(slot.id), teacher_id=1, locks=locks)


async def test_teacher_subject_mode(session, alice, monkeypatch, locks):
    monkeypatch.setattr(settings, "booking_mode", "with_teacher_subject")
    teacher = Teacher(name="Sato")
    retired = Teacher(name="Suzuki", is_active=False)
    subject = Subject(name="Math")
    session.add_all([teacher, retired, subject])
    await session.commit()
    slot = await _slot(session, capacity=2)

    with pytest.raises(InvalidRequest):
        await reserve(session, alice.id, str(slot.id), locks=locks)
    with pytest.raises(InvalidRequest):
        await reserve(session, alice.id, str(slot.id), teacher_id=retired.id, subject_id=subject.id, locks=locks)

    booking = await reserve(session, alice.id, str(slot.id), teacher_id=teacher.id, subject_id=subject.id, locks=locks)
    assert (booking.teacher_id, booking.subject_id) == (teacher.id, subject.id)


async def test_lock_timeout_retries_once_then_gives_up():
    registry = SlotLockRegistry(timeout=0.01, retries=1)
    async with registry.hold(5):
        with pytest.raises(SlotBusy):
            async with registry.hold(5):
                pass
    assert len(registry) == 0


async def test_lock_serializes_same_key():
    registry = SlotLockRegistry(timeout=1.0)
    order: list[str] = []

    async def worker(name: str) -> None:
        async with registry.hold("k"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert len(registry) == 0


async def test_unique_index_catches_a_missed_duplicate(session, alice, locks, monkeypatch):
    """If the duplicate check misses a concurrent insert, the partial index still refuses it."""
    slot = await _slot(session, capacity=3)
    slot_id, user_id = slot.id, alice.id
    await reserve(session, user_id, str(slot_id), locks=locks)

    real_lookup = reservation_service.find_confirmed_by_user_and_slot
    calls: list[int] = []

    async def misses_once(s, uid, sid):
        calls.append(sid)
        if len(calls) == 1:
            return None
        return await real_lookup(s, uid, sid)

    monkeypatch.setattr(reservation_service, "find_confirmed_by_user_and_slot", misses_once)
    with pytest.raises(DuplicateBooking):
        await reserve(session, user_id, str(slot_id), locks=locks)
    assert await count_confirmed_bookings(session, slot_id) == 1


async def test_other_integrity_errors_are_not_reported_as_duplicates(session, alice, locks, monkeypatch):
    slot = await _slot(session)
    slot_id, user_id = slot.id, alice.id

    async def broken_insert(*args, **kwargs):
        raise IntegrityError("INSERT INTO bookings", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(reservation_service, "create_booking", broken_insert)
    with pytest.raises(IntegrityError):
        await reserve(session, user_id, str(slot_id), locks=locks)
    assert await count_confirmed_bookings(session, slot_id) == 0


async def test_synthetic_id_reactivates_deactivated_row(session, alice, locks):
    retired = await _slot(session, "13:00", "14:00", capacity=3)
    retired.is_active = False
    session.add(retired)
    await session.commit()

    booking = await reserve(session, alice.id, "dynamic-2025-06-10-2", locks=locks)
    slot = await session.get(TimeSlot, booking.time_slot_id)
    assert slot.id == retired.id
    assert slot.is_active
    assert (slot.source, slot.max_capacity) == (SlotSource.MATERIALIZED.value, 1)


async def test_synthetic_id_not_bookable_over_deactivated_row_when_ledger_governs(session, alice, locks):
    retired = await _slot(session, "13:00", "14:00")
    retired.is_active = False
    session.add(retired)
    await _slot(session, "15:00", "16:00")
    await session.commit()

    with pytest.raises(SlotNotFound):
        await reserve(session, alice.id, "dynamic-2025-06-10-2", locks=locks)


def test_timestamps_are_timezone_aware():
    booking = Booking(user_id=1, time_slot_id=1)
    slot = TimeSlot(date=DAY, start_time="10:00", end_time="11:00")
    assert booking.created_at.tzinfo is UTC
    assert slot.created_at.tzinfo is UTC
    for column in (Booking.__table__.c.created_at, Booking.__table__.c.cancelled_at, TimeSlot.__table__.c.created_at):
        assert column.type.timezone is True
