# tests/unit/test_validation.py

import pytest

from ticket_engine.domain.exceptions import BookingValidationError
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.domain.validation import AttendeeDetails, BookingDraft, BookingValidator


def _attendee(index: int) -> AttendeeDetails:
    return AttendeeDetails(
        name=f"Attendee {index}",
        email=f"attendee{index}@example.com",
        phone="+2348000000000",
    )


def _draft(quantity: int, attendees) -> BookingDraft:
    return BookingDraft(
        event_id="event-1",
        ticket_type_id="ticket-type-1",
        quantity=quantity,
        idempotency_key="key-1",
        attendees=tuple(attendees),
    )


def _fields(exc_info) -> list[str]:
    return [error.field for error in exc_info.value.errors]


def test_valid_draft_is_normalised():
    draft = _draft(
        1,
        [AttendeeDetails(name="  Ada ", email=" ada@example.com ", phone=" 0800 ")],
    )

    valid = BookingValidator().validate(draft, remaining=10)

    assert valid.attendees == (
        AttendeeDetails(name="Ada", email="ada@example.com", phone="0800"),
    )


def test_all_attendee_errors_reported_together():
    attendees = [
        _attendee(0),
        AttendeeDetails(name="Bola", email="", phone="0801"),
        AttendeeDetails(name="Chidi", email="", phone=""),
    ]

    with pytest.raises(BookingValidationError) as exc_info:
        BookingValidator().validate(_draft(3, attendees), remaining=10)

    assert len(exc_info.value.errors) == 3
    assert _fields(exc_info) == [
        "attendees[1].email",
        "attendees[2].email",
        "attendees[2].phone",
    ]


def test_invalid_email_format():
    attendees = [AttendeeDetails(name="Ada", email="not-an-email", phone="0800")]

    with pytest.raises(BookingValidationError) as exc_info:
        BookingValidator().validate(_draft(1, attendees), remaining=10)

    assert exc_info.value.errors[0].message == "Invalid email format"


@pytest.mark.parametrize("quantity", [0, 11])
def test_quantity_outside_bounds(quantity):
    attendees = [_attendee(index) for index in range(max(quantity, 0))]

    with pytest.raises(BookingValidationError) as exc_info:
        BookingValidator().validate(_draft(quantity, attendees), remaining=100)

    assert exc_info.value.errors[0].message == "Quantity must be between 1 and 10"


def test_quantity_cap_follows_policy():
    validator = BookingValidator(BookingPolicy(max_tickets_per_booking=2))
    attendees = [_attendee(index) for index in range(3)]

    with pytest.raises(BookingValidationError) as exc_info:
        validator.validate(_draft(3, attendees), remaining=100)

    assert exc_info.value.errors[0].message == "Quantity must be between 1 and 2"


def test_quantity_above_remaining():
    attendees = [_attendee(index) for index in range(3)]

    with pytest.raises(BookingValidationError) as exc_info:
        BookingValidator().validate(_draft(3, attendees), remaining=2)

    assert exc_info.value.errors[0].message == "Only 2 tickets available"


def test_attendee_count_must_match_quantity():
    with pytest.raises(BookingValidationError) as exc_info:
        BookingValidator().validate(_draft(2, [_attendee(0)]), remaining=10)

    assert _fields(exc_info) == ["attendees"]
    assert exc_info.value.errors[0].message == "Expected 2 attendee(s), got 1"
