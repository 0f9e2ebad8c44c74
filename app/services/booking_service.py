from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.booking import Booking, BookingStatus
from app.models.reference import Subject, Teacher
from app.models.time_slot import TimeSlot


def _utc_now() -> datetime:
    return datetime.now(UTC)


async def create_booking(
    session: AsyncSession,
    user_id: int,
    slot_id: int,
    notes: str | None = None,
    teacher_id: int | None = None,
    subject_id: int | None = None,
) -> Booking:
    booking = Booking(
        user_id=user_id,
        time_slot_id=slot_id,
        notes=notes,
        teacher_id=teacher_id,
        subject_id=subject_id,
    )
    session.add(booking)
    await session.flush()
    await session.refresh(booking)
    return booking


async def find_booking_by_id(session: AsyncSession, booking_id: int, user_id: int) -> Booking | None:
    result = await session.execute(
        select(Booking).where(Booking.id == booking_id, Booking.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def find_confirmed_by_user_and_slot(
    session: AsyncSession, user_id: int, slot_id: int
) -> Booking | None:
    result = await session.execute(
        select(Booking).where(
            Booking.user_id == user_id,
            Booking.time_slot_id == slot_id,
            Booking.status == BookingStatus.CONFIRMED.value,
        )
    )
    return result.scalars().first()


async def update_status(session: AsyncSession, booking: Booking, status: BookingStatus) -> Booking:
    booking.status = status.value
    if status is BookingStatus.CANCELLED:
        booking.cancelled_at = _utc_now()
    session.add(booking)
    await session.flush()
    return booking


async def set_external_ref(session: AsyncSession, booking_id: int, ref: str | None) -> None:
    result = await session.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        return
    booking.external_event_ref = ref
    session.add(booking)
    await session.flush()


async def list_bookings_for_user(
    session: AsyncSession, user_id: int
) -> list[tuple[Booking, TimeSlot]]:
    result = await session.execute(
        select(Booking, TimeSlot)
        .join(TimeSlot, TimeSlot.id == Booking.time_slot_id)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return [(b, s) for b, s in result.all()]


async def get_booking_detail(
    session: AsyncSession, booking_id: int, user_id: int
) -> tuple[Booking, TimeSlot, Teacher | None, Subject | None] | None:
    result = await session.execute(
        select(Booking, TimeSlot, Teacher, Subject)
        .join(TimeSlot, TimeSlot.id == Booking.time_slot_id)
        .outerjoin(Teacher, Teacher.id == Booking.teacher_id)
        .outerjoin(Subject, Subject.id == Booking.subject_id)
        .where(Booking.id == booking_id, Booking.user_id == user_id)
    )
    row = result.first()
    if row is None:
        return None
    booking, slot, teacher, subject = row
    return booking, slot, teacher, subject


async def load_booking_context(
    session: AsyncSession, booking_id: int
) -> tuple[Booking, TimeSlot] | None:
    """Booking plus its slot regardless of owner, for background side effects."""
    result = await session.execute(
        select(Booking, TimeSlot)
        .join(TimeSlot, TimeSlot.id == Booking.time_slot_id)
        .where(Booking.id == booking_id)
    )
    row = result.first()
    return (row[0], row[1]) if row else None
