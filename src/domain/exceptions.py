from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    EXTERNAL_PROVIDER = "external_provider"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    INVALID_STATE = "invalid_state"
    AUTHENTICITY = "authenticity"
    DATABASE = "database"


class FlightBookingError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking reconciliation engine.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class BookingValidationError(FlightBookingError):
    """Raised when checkout input is missing or inconsistent."""

    kind = ErrorKind.VALIDATION


class InvalidOfferError(BookingValidationError):
    """Raised when an offer has expired or its price no longer matches."""


class BookingNotFoundError(FlightBookingError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class AccessDeniedError(FlightBookingError):
    """Raised when the acting user is missing or lacks the required role."""

    kind = ErrorKind.AUTHORIZATION


class BookingAccessDeniedError(AccessDeniedError):
    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("You do not have permission to access this booking")


class InvalidStateTransitionError(FlightBookingError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    kind = ErrorKind.INVALID_STATE

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class BookingStateError(FlightBookingError):
    """Raised when an operation does not apply to the booking's current status."""

    kind = ErrorKind.INVALID_STATE


class IdempotencyConflictError(FlightBookingError):
    """Raised when an idempotent request conflicts with previous data."""

    kind = ErrorKind.IDEMPOTENCY_CONFLICT


class ExternalProviderError(FlightBookingError):
    """Raised when the payment or ticketing provider fails or rejects a call."""

    kind = ErrorKind.EXTERNAL_PROVIDER

    def __init__(self, provider: str, upstream_message: str):
        self.provider = provider
        self.upstream_message = upstream_message
        super().__init__(
            f"{provider}: {upstream_message}",
            details={"provider": provider},
        )


class WebhookSignatureError(FlightBookingError):
    """Raised when a webhook delivery cannot be authenticated."""

    kind = ErrorKind.AUTHENTICITY

    def __init__(self, provider: str, reason: str = "Invalid webhook signature"):
        self.provider = provider
        super().__init__(reason, details={"provider": provider})
