from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    return datetime.now(UTC)


class BookingStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # At most one confirmed booking per user per slot
        Index(
            "uq_bookings_confirmed_user_slot",
            "user_id",
            "time_slot_id",
            unique=True,
            postgresql_where=text("status = 'CONFIRMED'"),
            sqlite_where=text("status = 'CONFIRMED'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    time_slot_id: int = Field(foreign_key="time_slots.id", index=True)
    status: str = Field(default=BookingStatus.CONFIRMED.value, max_length=20, index=True)
    notes: str | None = None
    teacher_id: int | None = Field(default=None, foreign_key="teachers.id")
    subject_id: int | None = Field(default=None, foreign_key="subjects.id")
    external_event_ref: str | None = None
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    cancelled_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
