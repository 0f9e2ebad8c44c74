import datetime as dt
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class SlotSource(str, Enum):
    LEDGER = "ledger"  # seeded or created by an admin
    MATERIALIZED = "materialized"  # persisted on first booking of a default-schedule window


class TimeSlot(SQLModel, table=True):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("date", "start_time", name="uq_time_slots_date_start"),
        CheckConstraint("start_time < end_time", name="ck_time_slots_start_before_end"),
        CheckConstraint("max_capacity > 0", name="ck_time_slots_capacity_positive"),
    )

    id: int | None = Field(default=None, primary_key=True)
    date: dt.date = Field(index=True)
    start_time: str = Field(max_length=5)  # HH:MM, local to settings.timezone
    end_time: str = Field(max_length=5)
    max_capacity: int = 1
    is_active: bool = True
    source: str = Field(default=SlotSource.LEDGER.value, max_length=20)
    created_at: dt.datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
