"""Service-level errors. Each carries a stable machine-readable code and the HTTP status
the request boundary reports it with."""


class ServiceError(Exception):
    code = "service_error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(ServiceError):
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class InvalidRequest(ServiceError):
    code = "invalid_request"
    status_code = 400
    default_message = "Invalid request"


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class UserNotFound(NotFound):
    code = "user_not_found"
    default_message = "User not found"


class SlotNotFound(NotFound):
    code = "slot_not_found"
    default_message = "Time slot not found"


class BookingNotFound(NotFound):
    code = "booking_not_found"
    default_message = "Booking not found"


class Conflict(ServiceError):
    code = "conflict"
    status_code = 409
    default_message = "Conflict"


class SlotFull(Conflict):
    code = "slot_full"
    default_message = "This time slot is fully booked"


class DuplicateBooking(Conflict):
    code = "duplicate_booking"
    default_message = "You have already booked this time slot"


class InvalidState(Conflict):
    code = "invalid_state"
    default_message = "Booking cannot be changed in its current state"


class SlotBusy(Conflict):
    code = "slot_busy"
    default_message = "Time slot is being booked by someone else, please retry"


class UpstreamError(ServiceError):
    """External calendar / messaging failure. Absorbed by the side-effect layer."""

    code = "upstream_error"
    status_code = 502
    default_message = "Upstream service failed"
