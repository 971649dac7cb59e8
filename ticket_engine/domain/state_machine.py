# ticket_engine/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from ticket_engine.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    RESERVING = "RESERVING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ISSUING = "ISSUING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUND_PENDING = "REFUND_PENDING"


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.DRAFT: {
            BookingStatus.VALIDATING,
        },
        BookingStatus.VALIDATING: {
            BookingStatus.RESERVING,
            BookingStatus.FAILED,
        },
        BookingStatus.RESERVING: {
            BookingStatus.AWAITING_PAYMENT,
            BookingStatus.ISSUING,
            BookingStatus.FAILED,
        },
        BookingStatus.AWAITING_PAYMENT: {
            BookingStatus.PAID,
            BookingStatus.PAYMENT_FAILED,
            BookingStatus.FAILED,
        },
        BookingStatus.PAID: {
            BookingStatus.ISSUING,
        },
        BookingStatus.PAYMENT_FAILED: {
            BookingStatus.FAILED,
        },
        BookingStatus.ISSUING: {
            BookingStatus.CONFIRMED,
            BookingStatus.FAILED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.CANCELLED,
        },
        BookingStatus.FAILED: set(),
        BookingStatus.CANCELLED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
