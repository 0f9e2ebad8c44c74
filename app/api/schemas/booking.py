import datetime as dt

from pydantic import Field

from app.api.schemas.base import CamelModel


class CreateBookingRequest(CamelModel):
    time_slot_id: str | int
    date: dt.date | None = None
    notes: str | None = Field(default=None, max_length=1000)
    teacher_id: int | None = None
    subject_id: int | None = None


class BookingOut(CamelModel):
    id: int
    time_slot_id: int
    date: dt.date
    start_time: str
    end_time: str
    status: str
    notes: str | None = None
    teacher_id: int | None = None
    subject_id: int | None = None
    created_at: dt.datetime


class BookingDetailOut(BookingOut):
    teacher_name: str | None = None
    teacher_picture: str | None = None
    subject_name: str | None = None


class MessageResponse(CamelModel):
    message: str
