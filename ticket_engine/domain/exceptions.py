from dataclasses import dataclass


class TicketEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the Ticket Booking & Verification Engine.
    """

    code = "TICKET_ENGINE_ERROR"


class InvalidStateTransitionError(TicketEngineError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InvalidPriceError(TicketEngineError):
    """Raised for a negative unit price or a non-positive quantity."""

    code = "INVALID_PRICE"


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class BookingValidationError(TicketEngineError):
    """Carries every field-level problem found in one validation pass."""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        super().__init__(
            f"Booking request has {len(self.errors)} invalid field(s)"
        )


class InsufficientInventoryError(TicketEngineError):
    """Raised when a ticket type cannot cover the requested quantity."""

    code = "INSUFFICIENT_INVENTORY"

    def __init__(self, ticket_type_id: str, requested: int, remaining: int):
        self.ticket_type_id = ticket_type_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Only {remaining} tickets available, {requested} requested"
        )


class ReservationExpiredError(TicketEngineError):
    """Raised when a reservation is no longer held (released or swept)."""

    code = "RESERVATION_EXPIRED"


class IdempotencyConflictError(TicketEngineError):
    """Raised when an idempotent request conflicts with previous data."""

    code = "IDEMPOTENCY_CONFLICT"


class EventNotFoundError(TicketEngineError):
    code = "EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__("Event not found")


class TicketTypeNotFoundError(TicketEngineError):
    code = "TICKET_TYPE_NOT_FOUND"

    def __init__(self, ticket_type_id: str):
        self.ticket_type_id = ticket_type_id
        super().__init__("Ticket type not found")


class BookingNotFoundError(TicketEngineError):
    code = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__("Booking not found")


class EventClosedError(TicketEngineError):
    """Raised when booking is attempted after the event has ended."""

    code = "EVENT_CLOSED"


class ForbiddenError(TicketEngineError):
    code = "FORBIDDEN"


class CancellationNotAllowedError(TicketEngineError):
    code = "CANCELLATION_NOT_ALLOWED"


class PaymentFailedError(TicketEngineError):
    """
    Raised when the payment authority rejects a confirmation id.
    The reservation has already been released when this surfaces.
    """

    code = "PAYMENT_FAILED"


class PaymentTimeoutError(PaymentFailedError):
    code = "PAYMENT_TIMEOUT"


class PaymentAlreadyUsedError(TicketEngineError):
    """Raised when a payment confirmation id is linked to another booking."""

    code = "PAYMENT_ALREADY_USED"


class PaymentAuthorityError(TicketEngineError):
    """Raised by payment authority adapters when the provider call fails."""

    code = "PAYMENT_AUTHORITY_ERROR"


class CredentialIssuanceError(TicketEngineError):
    """Server-side failure while minting credentials. Retried asynchronously."""

    code = "ISSUANCE_FAILURE"


class InvalidCredentialError(TicketEngineError):
    code = "INVALID_CREDENTIAL"


class EventMismatchError(TicketEngineError):
    code = "EVENT_MISMATCH"

    def __init__(self, gate_event_id: str, credential_event_id: str):
        self.gate_event_id = gate_event_id
        self.credential_event_id = credential_event_id
        super().__init__("Credential belongs to a different event")
