import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import (
    get_calendar_client,
    get_current_user,
    get_notifier,
    get_session,
    get_session_maker,
    get_slot_locks,
)
from app.api.schemas.booking import (
    BookingDetailOut,
    BookingOut,
    CreateBookingRequest,
    MessageResponse,
)
from app.models.booking import Booking
from app.models.time_slot import TimeSlot
from app.models.user import User
from app.services.booking_events import (
    CalendarWriter,
    Notifier,
    on_booking_cancelled,
    on_booking_created,
)
from app.services.booking_service import get_booking_detail, list_bookings_for_user
from app.services.errors import BookingNotFound
from app.services.reservation_service import SlotLockRegistry, cancel, reserve

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


def _to_public(b: Booking, slot: TimeSlot) -> BookingOut:
    return BookingOut(
        id=b.id,
        time_slot_id=slot.id,
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        status=b.status,
        notes=b.notes,
        teacher_id=b.teacher_id,
        subject_id=b.subject_id,
        created_at=b.created_at,
    )


@router.get("", response_model=list[BookingOut])
async def list_my_bookings(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[BookingOut]:
    rows = await list_bookings_for_user(session, current_user.id)
    return [_to_public(b, s) for b, s in rows]


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    locks: SlotLockRegistry = Depends(get_slot_locks),
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    writer: CalendarWriter = Depends(get_calendar_client),
    notifier: Notifier = Depends(get_notifier),
) -> BookingOut:
    booking = await reserve(
        session,
        current_user.id,
        str(body.time_slot_id),
        on_date=body.date,
        notes=body.notes,
        teacher_id=body.teacher_id,
        subject_id=body.subject_id,
        locks=locks,
    )
    # reserve() has committed; mirror + notify run after the response
    background_tasks.add_task(
        on_booking_created,
        booking.id,
        session_maker=session_maker,
        writer=writer,
        notifier=notifier,
    )
    slot = await session.get(TimeSlot, booking.time_slot_id)
    return _to_public(booking, slot)


@router.get("/{booking_id}", response_model=BookingDetailOut)
async def get_my_booking(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> BookingDetailOut:
    detail = await get_booking_detail(session, booking_id, current_user.id)
    if detail is None:
        raise BookingNotFound()
    booking, slot, teacher, subject = detail
    return BookingDetailOut(
        **_to_public(booking, slot).model_dump(),
        teacher_name=teacher.name if teacher else None,
        teacher_picture=teacher.picture_url if teacher else None,
        subject_name=subject.name if subject else None,
    )


@router.delete("/{booking_id}", response_model=MessageResponse)
async def cancel_my_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
    locks: SlotLockRegistry = Depends(get_slot_locks),
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    writer: CalendarWriter = Depends(get_calendar_client),
    notifier: Notifier = Depends(get_notifier),
) -> MessageResponse:
    booking = await cancel(session, current_user.id, booking_id, locks=locks)
    background_tasks.add_task(
        on_booking_cancelled,
        booking.id,
        session_maker=session_maker,
        writer=writer,
        notifier=notifier,
    )
    return MessageResponse(message="Booking cancelled")
