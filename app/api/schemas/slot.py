import datetime as dt

from app.api.schemas.base import CamelModel


class AvailableSlotOut(CamelModel):
    id: str
    date: dt.date
    start_time: str
    end_time: str
    max_capacity: int
    current_bookings: int
    available: bool


class SeedResponse(CamelModel):
    message: str
    created: int
    dates: list[dt.date]
