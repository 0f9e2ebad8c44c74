import re
from datetime import date, datetime, timedelta

from app.core.config import settings

SYNTHETIC_PREFIX = "dynamic-"
_SYNTHETIC_RE = re.compile(r"^dynamic-(\d{4}-\d{2}-\d{2})-(\d+)$")


def default_schedule(d: date) -> list[tuple[str, str]]:
    """Canonical (start, end) HH:MM windows for a date: opening to closing hour,
    skipping the midday break. Same output for every date under one configuration."""
    windows: list[tuple[str, str]] = []
    delta = timedelta(minutes=settings.slot_duration_minutes)
    current = datetime(d.year, d.month, d.day, settings.opening_hour, 0)
    close = datetime(d.year, d.month, d.day, settings.closing_hour, 0)
    break_start = datetime(d.year, d.month, d.day, settings.break_start_hour, 0)
    break_end = datetime(d.year, d.month, d.day, settings.break_end_hour, 0)
    while current + delta <= close:
        end = current + delta
        if current < break_end and end > break_start:
            current = max(end, break_end)
            continue
        windows.append((current.strftime("%H:%M"), end.strftime("%H:%M")))
        current = end
    return windows


def synthetic_slot_id(d: date, index: int) -> str:
    return f"{SYNTHETIC_PREFIX}{d.isoformat()}-{index}"


def parse_slot_ref(slot_ref: str) -> tuple[date, int] | int:
    """Return (date, index) for a synthetic id or the integer id of a persisted slot.

    Raises ValueError for anything else.
    """
    slot_ref = slot_ref.strip()
    m = _SYNTHETIC_RE.match(slot_ref)
    if m:
        return date.fromisoformat(m.group(1)), int(m.group(2))
    if slot_ref.isdigit():
        return int(slot_ref)
    raise ValueError(f"Malformed slot id: {slot_ref!r}")


def to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)
