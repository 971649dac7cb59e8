# ticket_engine/domain/validation.py

import re
from dataclasses import dataclass, field, replace

from ticket_engine.domain.exceptions import BookingValidationError, FieldError
from ticket_engine.domain.policy import BookingPolicy

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class AttendeeDetails:
    name: str = ""
    email: str = ""
    phone: str = ""

    def normalized(self) -> "AttendeeDetails":
        return AttendeeDetails(
            name=(self.name or "").strip(),
            email=(self.email or "").strip(),
            phone=(self.phone or "").strip(),
        )


@dataclass(frozen=True)
class BookingDraft:
    """A booking request as submitted by the caller, before any checks."""

    event_id: str
    ticket_type_id: str
    quantity: int
    idempotency_key: str
    attendees: tuple[AttendeeDetails, ...] = field(default_factory=tuple)
    payment_confirmation_id: str | None = None


class BookingValidator:
    """
    Structural and semantic checks on a booking request.

    The remaining count passed in is a live but unlocked read: the check
    only exists to fail fast with a useful message. The inventory ledger
    makes the authoritative decision when it reserves.
    """

    def __init__(self, policy: BookingPolicy | None = None):
        self.policy = policy or BookingPolicy()

    def validate(self, draft: BookingDraft, remaining: int) -> BookingDraft:
        errors: list[FieldError] = []
        quantity = draft.quantity
        max_quantity = self.policy.max_tickets_per_booking

        quantity_is_int = isinstance(quantity, int) and not isinstance(quantity, bool)
        if not quantity_is_int or not 1 <= quantity <= max_quantity:
            errors.append(
                FieldError("quantity", f"Quantity must be between 1 and {max_quantity}")
            )
        elif quantity > remaining:
            errors.append(
                FieldError("quantity", f"Only {max(remaining, 0)} tickets available")
            )

        if quantity_is_int and len(draft.attendees) != quantity:
            errors.append(
                FieldError(
                    "attendees",
                    f"Expected {quantity} attendee(s), got {len(draft.attendees)}",
                )
            )

        attendees = tuple(attendee.normalized() for attendee in draft.attendees)
        for index, attendee in enumerate(attendees):
            errors.extend(self._attendee_errors(index, attendee))

        if errors:
            raise BookingValidationError(errors)

        return replace(draft, attendees=attendees)

    @staticmethod
    def _attendee_errors(index: int, attendee: AttendeeDetails) -> list[FieldError]:
        prefix = f"attendees[{index}]"
        errors = []
        if not attendee.name:
            errors.append(FieldError(f"{prefix}.name", "Name is required"))
        if not attendee.email:
            errors.append(FieldError(f"{prefix}.email", "Email is required"))
        elif not EMAIL_PATTERN.match(attendee.email):
            errors.append(FieldError(f"{prefix}.email", "Invalid email format"))
        if not attendee.phone:
            errors.append(FieldError(f"{prefix}.phone", "Phone number is required"))
        return errors
