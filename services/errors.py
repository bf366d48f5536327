"""
Domain exceptions raised by the booking, slot and payment services.

Each carries the HTTP status the API answers with and a short machine code;
the Flask error handler in app.py renders them as ``{"error", "code"}``.
"""


class BookingError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, status_code: int = None, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class ValidationFailed(BookingError):
    status_code = 400
    code = "invalid_request"


class SlotUnavailable(BookingError):
    status_code = 409
    code = "slot_unavailable"

    def __init__(self, message: str = "Time slot is no longer available"):
        super().__init__(message)


class DuplicateBooking(BookingError):
    status_code = 409
    code = "duplicate_booking"

    def __init__(self, message: str = "You already have a booking for this time slot"):
        super().__init__(message)


class SlotInUse(BookingError):
    status_code = 409
    code = "slot_in_use"


class SlotExists(BookingError):
    status_code = 409
    code = "slot_exists"


class InvalidState(BookingError):
    status_code = 409
    code = "invalid_state"


class InvalidTransition(InvalidState):
    code = "invalid_transition"


class CutoffWindow(BookingError):
    status_code = 409
    code = "cutoff_window"


class PastAppointment(BookingError):
    status_code = 409
    code = "past_appointment"


class PaymentAlreadyCompleted(BookingError):
    status_code = 400
    code = "payment_completed"

    def __init__(self, message: str = "Payment already completed for this booking"):
        super().__init__(message)


class GatewayNotConfigured(BookingError):
    status_code = 500
    code = "gateway_not_configured"

    def __init__(self, message: str = "Payment gateway not configured"):
        super().__init__(message)


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)
