# tests/unit/test_state_machine.py

import pytest

from ticket_engine.domain.state_machine import BookingStateMachine, BookingStatus
from ticket_engine.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_free_ticket_path():
    path = [
        BookingStatus.DRAFT,
        BookingStatus.VALIDATING,
        BookingStatus.RESERVING,
        BookingStatus.ISSUING,
        BookingStatus.CONFIRMED,
    ]
    for from_status, to_status in zip(path, path[1:]):
        assert BookingStateMachine.can_transition(from_status, to_status)


def test_paid_ticket_path():
    path = [
        BookingStatus.DRAFT,
        BookingStatus.VALIDATING,
        BookingStatus.RESERVING,
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.PAID,
        BookingStatus.ISSUING,
        BookingStatus.CONFIRMED,
    ]
    for from_status, to_status in zip(path, path[1:]):
        assert BookingStateMachine.can_transition(from_status, to_status)


def test_payment_failure_ends_in_failed():
    assert BookingStateMachine.can_transition(
        BookingStatus.AWAITING_PAYMENT,
        BookingStatus.PAYMENT_FAILED,
    )
    assert BookingStateMachine.get_allowed_transitions(BookingStatus.PAYMENT_FAILED) == {
        BookingStatus.FAILED
    }


def test_confirmed_can_be_cancelled():
    assert BookingStateMachine.can_transition(
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
    )


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_skip_payment():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.AWAITING_PAYMENT,
            BookingStatus.ISSUING,
        )


def test_cannot_confirm_without_issuing():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PAID,
            BookingStatus.CONFIRMED,
        )


@pytest.mark.parametrize("terminal", [BookingStatus.FAILED, BookingStatus.CANCELLED])
def test_terminal_states(terminal):
    assert BookingStateMachine.is_terminal(terminal)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            terminal,
            BookingStatus.CONFIRMED,
        )


def test_confirmed_is_not_terminal():
    assert not BookingStateMachine.is_terminal(BookingStatus.CONFIRMED)


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "DRAFT",  # invalid type
            BookingStatus.VALIDATING,
        )
