"""
Reservation coordinator.

reserve() runs in two phases: resolve the slot reference to a persisted row
(materializing a default-schedule window on first use), then check capacity and
duplicates and insert the booking as one unit under a per-slot lock. Occupancy is
always derived by counting CONFIRMED bookings.
"""
import asyncio
import logging
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.booking import Booking, BookingStatus
from app.models.reference import Subject, Teacher
from app.models.time_slot import SlotSource, TimeSlot
from app.services.booking_service import (
    create_booking,
    find_booking_by_id,
    find_confirmed_by_user_and_slot,
    update_status,
)
from app.services.errors import (
    BookingNotFound,
    DuplicateBooking,
    InvalidRequest,
    InvalidState,
    ServiceError,
    SlotBusy,
    SlotFull,
    SlotNotFound,
)
from app.services.schedule_service import default_schedule, parse_slot_ref
from app.services.slot_service import (
    count_confirmed_bookings,
    create_slot,
    find_slot_by_date_start,
    find_slot_by_id,
    has_active_ledger_slots,
    lock_slot,
)

logger = logging.getLogger(__name__)


class SlotLockRegistry:
    """Per-key asyncio locks. Entries are dropped once nobody holds or waits on them."""

    def __init__(self, timeout: float = 5.0, retries: int = 1) -> None:
        self.timeout = timeout
        self.retries = retries
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    async def _acquire(self, lock: asyncio.Lock) -> bool:
        for attempt in range(self.retries + 1):
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
                return True
            except TimeoutError:
                logger.warning("Slot lock wait timed out (attempt %d)", attempt + 1)
        return False

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            if not await self._acquire(lock):
                raise SlotBusy()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


slot_locks = SlotLockRegistry(timeout=settings.slot_lock_timeout_seconds)


async def _materialize(
    session: AsyncSession, d: date, start: str, end: str, locks: SlotLockRegistry
) -> TimeSlot:
    async with locks.hold(("materialize", d, start)):
        existing = await find_slot_by_date_start(session, d, start)
        if existing is not None:
            if not existing.is_active and not await has_active_ledger_slots(session, d):
                # deactivated ledger row on a window the default schedule offers again
                existing.is_active = True
                existing.source = SlotSource.MATERIALIZED.value
                existing.end_time = end
                existing.max_capacity = 1
                session.add(existing)
                await session.commit()
                logger.info("Reactivated slot %s for %s %s-%s", existing.id, d, start, end)
            return existing
        try:
            slot = await create_slot(session, d, start, end, capacity=1, source=SlotSource.MATERIALIZED)
            await session.commit()
        except IntegrityError:
            # another process materialized the same window first
            await session.rollback()
            existing = await find_slot_by_date_start(session, d, start)
            if existing is None:
                raise
            return existing
        logger.info("Materialized slot %s for %s %s-%s", slot.id, d, start, end)
        return slot


async def resolve_slot(
    session: AsyncSession,
    slot_ref: str,
    on_date: date | None = None,
    locks: SlotLockRegistry = slot_locks,
) -> TimeSlot:
    """Turn a public slot id (persisted or synthetic) into an active persisted TimeSlot."""
    try:
        parsed = parse_slot_ref(str(slot_ref))
    except ValueError:
        raise SlotNotFound() from None
    if isinstance(parsed, int):
        slot = await find_slot_by_id(session, parsed)
        if slot is None or (on_date is not None and slot.date != on_date):
            raise SlotNotFound()
    else:
        d, index = parsed
        if on_date is not None and on_date != d:
            raise SlotNotFound()
        windows = default_schedule(d)
        if index >= len(windows):
            raise SlotNotFound()
        start, end = windows[index]
        slot = await _materialize(session, d, start, end, locks)
    if not slot.is_active:
        raise SlotNotFound()
    return slot


async def _check_teacher_subject(
    session: AsyncSession, teacher_id: int | None, subject_id: int | None
) -> None:
    if settings.booking_mode == "simple":
        if teacher_id is not None or subject_id is not None:
            raise InvalidRequest("Teacher and subject are not used for bookings")
        return
    if teacher_id is None or subject_id is None:
        raise InvalidRequest("teacherId and subjectId are required")
    teacher = (await session.execute(select(Teacher).where(Teacher.id == teacher_id))).scalar_one_or_none()
    if teacher is None or not teacher.is_active:
        raise InvalidRequest("Unknown teacher")
    subject = (await session.execute(select(Subject).where(Subject.id == subject_id))).scalar_one_or_none()
    if subject is None or not subject.is_active:
        raise InvalidRequest("Unknown subject")


async def reserve(
    session: AsyncSession,
    user_id: int,
    slot_ref: str,
    on_date: date | None = None,
    notes: str | None = None,
    teacher_id: int | None = None,
    subject_id: int | None = None,
    locks: SlotLockRegistry = slot_locks,
) -> Booking:
    """Book `slot_ref` for `user_id`. Commits before returning.

    Raises SlotNotFound, SlotFull, DuplicateBooking, SlotBusy or InvalidRequest. Business
    errors are raised before anything is written and leave the session untouched; an
    IntegrityError other than the confirmed-booking index is re-raised as is.
    """
    await _check_teacher_subject(session, teacher_id, subject_id)
    slot = await resolve_slot(session, slot_ref, on_date=on_date, locks=locks)
    slot_id = slot.id

    async with locks.hold(slot_id):
        try:
            locked = await lock_slot(session, slot_id)
            if locked is None or not locked.is_active:
                raise SlotNotFound()
            if await count_confirmed_bookings(session, slot_id) >= locked.max_capacity:
                raise SlotFull()
            if await find_confirmed_by_user_and_slot(session, user_id, slot_id):
                raise DuplicateBooking()
            booking = await create_booking(
                session,
                user_id,
                slot_id,
                notes=notes,
                teacher_id=teacher_id,
                subject_id=subject_id,
            )
            await session.commit()
        except ServiceError:
            # nothing written yet; the caller's transaction is left as it was
            raise
        except IntegrityError:
            await session.rollback()
            if await find_confirmed_by_user_and_slot(session, user_id, slot_id):
                raise DuplicateBooking() from None
            raise
        except Exception:
            await session.rollback()
            raise

    logger.info("Booking %s confirmed: user=%s slot=%s", booking.id, user_id, slot_id)
    return booking


async def cancel(
    session: AsyncSession,
    user_id: int,
    booking_id: int,
    locks: SlotLockRegistry = slot_locks,
) -> Booking:
    """Cancel a CONFIRMED booking owned by `user_id`. Commits before returning.

    Raises BookingNotFound or InvalidState.
    """
    booking = await find_booking_by_id(session, booking_id, user_id)
    if booking is None:
        raise BookingNotFound()

    async with locks.hold(booking.time_slot_id):
        try:
            await lock_slot(session, booking.time_slot_id)
            await session.refresh(booking)
            if booking.status != BookingStatus.CONFIRMED.value:
                raise InvalidState(f"Booking is {booking.status}")
            await update_status(session, booking, BookingStatus.CANCELLED)
            await session.commit()
        except ServiceError:
            raise
        except Exception:
            await session.rollback()
            raise

    logger.info("Booking %s cancelled by user %s", booking.id, user_id)
    return booking
