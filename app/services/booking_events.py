"""
Side effects of booking lifecycle events: calendar mirror + admin notification.

These run after the booking transaction has committed (scheduled as FastAPI background
tasks) and open their own session. Nothing here can fail a booking: every step logs
its own errors and moves on.
"""
import logging
from datetime import date
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.user import User
from app.services.booking_service import load_booking_context, set_external_ref
from app.services.notification_service import NotificationKind

logger = logging.getLogger(__name__)


class CalendarWriter(Protocol):
    async def create_event(self, summary: str, d: date, start_time: str, end_time: str) -> str | None: ...

    async def delete_event(self, event_ref: str) -> bool: ...


class Notifier(Protocol):
    async def notify(self, kind: NotificationKind, recipient_name: str | None, d: date, time_range: str) -> None: ...


async def _notify(notifier: Notifier, kind: NotificationKind, name: str | None, d: date, time_range: str) -> None:
    try:
        await notifier.notify(kind, name, d, time_range)
    except Exception as e:
        logger.exception("Booking %s notification failed: %s", kind, e)


async def on_booking_created(
    booking_id: int,
    session_maker: async_sessionmaker[AsyncSession],
    writer: CalendarWriter,
    notifier: Notifier,
) -> None:
    """Mirror a new booking into the external calendar and notify the admin."""
    try:
        async with session_maker() as session:
            ctx = await load_booking_context(session, booking_id)
            if ctx is None:
                logger.warning("Booking %s vanished before side effects ran", booking_id)
                return
            booking, slot = ctx
            user = await session.get(User, booking.user_id)
            name = user.display_name if user else None
            d, start, end = slot.date, slot.start_time, slot.end_time
    except Exception as e:
        logger.exception("Could not load booking %s for side effects: %s", booking_id, e)
        return

    try:
        ref = await writer.create_event(f"Lesson: {name or 'student'}", d, start, end)
        if ref:
            async with session_maker() as session:
                await set_external_ref(session, booking_id, ref)
                await session.commit()
    except Exception as e:
        logger.exception("Calendar mirror failed for booking %s: %s", booking_id, e)

    await _notify(notifier, "created", name, d, f"{start}-{end}")


async def on_booking_cancelled(
    booking_id: int,
    session_maker: async_sessionmaker[AsyncSession],
    writer: CalendarWriter,
    notifier: Notifier,
) -> None:
    """Remove the mirrored event (if any) and notify the admin of the cancellation."""
    try:
        async with session_maker() as session:
            ctx = await load_booking_context(session, booking_id)
            if ctx is None:
                logger.warning("Booking %s vanished before side effects ran", booking_id)
                return
            booking, slot = ctx
            user = await session.get(User, booking.user_id)
            name = user.display_name if user else None
            ref = booking.external_event_ref
            d, start, end = slot.date, slot.start_time, slot.end_time
    except Exception as e:
        logger.exception("Could not load booking %s for side effects: %s", booking_id, e)
        return

    if ref:
        try:
            if await writer.delete_event(ref):
                async with session_maker() as session:
                    await set_external_ref(session, booking_id, None)
                    await session.commit()
        except Exception as e:
            logger.exception("Calendar mirror delete failed for booking %s: %s", booking_id, e)

    await _notify(notifier, "cancelled", name, d, f"{start}-{end}")
