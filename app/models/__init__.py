from app.models.user import User, UserUpdate
from app.models.time_slot import SlotSource, TimeSlot
from app.models.booking import Booking, BookingStatus
from app.models.reference import Subject, Teacher

__all__ = [
    "User",
    "UserUpdate",
    "SlotSource",
    "TimeSlot",
    "Booking",
    "BookingStatus",
    "Subject",
    "Teacher",
]
