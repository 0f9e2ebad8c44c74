import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.time_slot import SlotSource, TimeSlot
from app.services.calendar_service import BusyInterval
from app.services.schedule_service import default_schedule, synthetic_slot_id, to_minutes
from app.services.slot_service import count_confirmed_by_slot, find_slots_by_date

logger = logging.getLogger(__name__)


class BusySource(Protocol):
    async def fetch_busy(self, d: date) -> list[BusyInterval]: ...


@dataclass
class AvailableSlot:
    id: str
    date: date
    start_time: str
    end_time: str
    max_capacity: int
    current_bookings: int
    available: bool = True


def _wall_minutes(moment: datetime, d: date) -> float:
    """Wall-clock minutes from the start of `d` in the reference timezone; may fall outside 0..1440.

    Computed from the local clock reading rather than elapsed time, so it lines up with
    HH:MM slot bounds on days when the UTC offset changes.
    """
    local = moment.astimezone(settings.tz)
    return (local.date() - d).days * 1440 + local.hour * 60 + local.minute + local.second / 60


def _busy_minutes(interval: BusyInterval, d: date) -> tuple[float, float]:
    return _wall_minutes(interval.start, d), _wall_minutes(interval.end, d)


def overlaps_busy(start_time: str, end_time: str, busy: list[BusyInterval], d: date) -> bool:
    """Half-open overlap: touching endpoints do not count. All-day intervals overlap everything."""
    slot_start = to_minutes(start_time)
    slot_end = to_minutes(end_time)
    for interval in busy:
        if interval.all_day:
            return True
        if interval.start is None or interval.end is None:
            continue
        busy_start, busy_end = _busy_minutes(interval, d)
        if slot_start < busy_end and slot_end > busy_start:
            return True
    return False


def _from_ledger(slot: TimeSlot, counts: dict[int, int]) -> AvailableSlot:
    return AvailableSlot(
        id=str(slot.id),
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        max_capacity=slot.max_capacity,
        current_bookings=counts.get(slot.id, 0),
    )


def _generated_candidates(
    d: date, materialized: list[TimeSlot], counts: dict[int, int]
) -> list[AvailableSlot]:
    """Default schedule for `d` with already-materialized windows swapped in by start time."""
    by_start = {s.start_time: s for s in materialized}
    out: list[AvailableSlot] = []
    for index, (start, end) in enumerate(default_schedule(d)):
        row = by_start.pop(start, None)
        if row is not None:
            if row.is_active:
                out.append(_from_ledger(row, counts))
            continue
        out.append(
            AvailableSlot(
                id=synthetic_slot_id(d, index),
                date=d,
                start_time=start,
                end_time=end,
                max_capacity=1,
                current_bookings=0,
            )
        )
    # materialized rows whose window is no longer in the schedule
    out.extend(_from_ledger(row, counts) for row in by_start.values() if row.is_active)
    return out


async def list_available(
    session: AsyncSession,
    d: date,
    busy_source: BusySource,
    now: datetime | None = None,
) -> list[AvailableSlot]:
    """Bookable slots for `d`, ordered by start time.

    Active ledger rows are authoritative once an administrator has created any for the
    date; otherwise the default schedule is offered. Both are filtered against the external
    calendar, and generated windows additionally against the same-day lead time.
    """
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    rows = await find_slots_by_date(session, d)
    ledger_rows = [r for r in rows if r.source == SlotSource.LEDGER.value and r.is_active]
    counts = await count_confirmed_by_slot(session, [r.id for r in rows])

    generated = not ledger_rows
    if generated:
        materialized = [r for r in rows if r.source == SlotSource.MATERIALIZED.value]
        candidates = _generated_candidates(d, materialized, counts)
    else:
        candidates = [_from_ledger(r, counts) for r in ledger_rows]

    busy = await busy_source.fetch_busy(d)
    if busy:
        candidates = [c for c in candidates if not overlaps_busy(c.start_time, c.end_time, busy, d)]

    local_now = now.astimezone(settings.tz)
    if generated and local_now.date() == d:
        cutoff = local_now.hour * 60 + local_now.minute + settings.lead_time_minutes
        candidates = [c for c in candidates if to_minutes(c.start_time) > cutoff]

    for c in candidates:
        c.available = c.current_bookings < c.max_capacity

    # sorted() is stable, so equal start times keep ledger order
    result = sorted(candidates, key=lambda c: to_minutes(c.start_time))
    logger.debug(
        "Availability for %s: %d slot(s) (%s, %d busy interval(s))",
        d, len(result), "generated" if generated else "ledger", len(busy),
    )
    return result
