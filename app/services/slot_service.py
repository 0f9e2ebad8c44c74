from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking import Booking, BookingStatus
from app.models.time_slot import SlotSource, TimeSlot
from app.services.errors import InvalidRequest
from app.services.schedule_service import default_schedule, to_minutes


async def find_slots_by_date(
    session: AsyncSession, d: date, active_only: bool = False
) -> list[TimeSlot]:
    q = select(TimeSlot).where(TimeSlot.date == d).order_by(TimeSlot.start_time, TimeSlot.id)
    if active_only:
        q = q.where(TimeSlot.is_active.is_(True))
    result = await session.execute(q)
    return list(result.scalars().all())


async def find_slot_by_id(session: AsyncSession, slot_id: int) -> TimeSlot | None:
    result = await session.execute(select(TimeSlot).where(TimeSlot.id == slot_id))
    return result.scalar_one_or_none()


async def find_slot_by_date_start(session: AsyncSession, d: date, start_time: str) -> TimeSlot | None:
    result = await session.execute(
        select(TimeSlot).where(TimeSlot.date == d, TimeSlot.start_time == start_time)
    )
    return result.scalar_one_or_none()


async def lock_slot(session: AsyncSession, slot_id: int) -> TimeSlot | None:
    """Re-read the slot row with a row lock (FOR UPDATE on PostgreSQL; ignored by SQLite)."""
    result = await session.execute(
        select(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_slot(
    session: AsyncSession,
    d: date,
    start_time: str,
    end_time: str,
    capacity: int = 1,
    source: SlotSource = SlotSource.LEDGER,
) -> TimeSlot:
    try:
        valid = to_minutes(start_time) < to_minutes(end_time)
    except ValueError:
        valid = False
    if not valid:
        raise InvalidRequest(f"Invalid slot window {start_time}-{end_time}")
    if capacity < 1:
        raise InvalidRequest("Slot capacity must be positive")
    slot = TimeSlot(
        date=d,
        start_time=start_time,
        end_time=end_time,
        max_capacity=capacity,
        source=source.value,
    )
    session.add(slot)
    await session.flush()
    await session.refresh(slot)
    return slot


async def count_confirmed_bookings(session: AsyncSession, slot_id: int) -> int:
    result = await session.execute(
        select(func.count(Booking.id)).where(
            Booking.time_slot_id == slot_id,
            Booking.status == BookingStatus.CONFIRMED.value,
        )
    )
    return int(result.scalar_one())


async def count_confirmed_by_slot(session: AsyncSession, slot_ids: list[int]) -> dict[int, int]:
    """Confirmed-booking counts for many slots in one query; slots without bookings are absent."""
    if not slot_ids:
        return {}
    result = await session.execute(
        select(Booking.time_slot_id, func.count(Booking.id))
        .where(
            Booking.time_slot_id.in_(slot_ids),
            Booking.status == BookingStatus.CONFIRMED.value,
        )
        .group_by(Booking.time_slot_id)
    )
    return {slot_id: int(n) for slot_id, n in result.all()}


async def seed_default_slots(session: AsyncSession, start: date, days: int) -> tuple[int, list[date]]:
    """Persist the default schedule as ledger rows for `days` dates from `start`.

    Dates that already have any rows are left untouched. Returns (rows created, dates seeded).
    """
    created = 0
    seeded: list[date] = []
    for offset in range(days):
        d = start + timedelta(days=offset)
        if await find_slots_by_date(session, d):
            continue
        for start_time, end_time in default_schedule(d):
            await create_slot(session, d, start_time, end_time, capacity=1, source=SlotSource.LEDGER)
            created += 1
        seeded.append(d)
    return created, seeded


async def has_active_ledger_slots(session: AsyncSession, d: date) -> bool:
    """True when an administrator's schedule, not the default one, governs `d`."""
    result = await session.execute(
        select(func.count(TimeSlot.id)).where(
            TimeSlot.date == d,
            TimeSlot.source == SlotSource.LEDGER.value,
            TimeSlot.is_active.is_(True),
        )
    )
    return result.scalar_one() > 0
