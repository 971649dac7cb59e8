import logging
import os

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ticket_engine.domain.credentials import (
    CredentialBinding,
    derive_verification_code,
    sign_credential,
)
from ticket_engine.domain.exceptions import BookingNotFoundError, CredentialIssuanceError
from ticket_engine.infrastructure.db.models import Booking, Credential
from ticket_engine.infrastructure.repositories.booking_repository import BookingRepository
from ticket_engine.infrastructure.repositories.credential_repository import CredentialRepository

logger = logging.getLogger(__name__)

DEFAULT_SIGNING_SECRET = "dev-only-change-me"
MAX_CODE_ATTEMPTS = 5


def credential_signing_secret() -> str:
    secret = os.getenv("CREDENTIAL_SIGNING_SECRET")
    if not secret:
        logger.warning(
            "CREDENTIAL_SIGNING_SECRET is not set; using the development secret."
        )
        return DEFAULT_SIGNING_SECRET
    return secret


class CredentialIssuer:
    """
    Mints entry credentials for a committed booking.

    Issuing is idempotent: a seat that already has a credential gets the
    existing row back, and the token itself is re-derivable from the
    booking, attendee and event ids.
    """

    def __init__(self, db: Session, signing_secret: str | None = None):
        self.db = db
        self.signing_secret = signing_secret or credential_signing_secret()
        self.booking_repository = BookingRepository(db)
        self.credential_repository = CredentialRepository(db)

    def issue(self, booking_id: str) -> list[Credential]:
        booking = self._load_booking(booking_id)

        try:
            if booking.credential_mode == Booking.LEGACY_SINGLE:
                return [self._ensure_credential(booking, attendee_id=None)]

            return [
                self._ensure_credential(booking, attendee_id=attendee.id)
                for attendee in booking.attendees
            ]
        except SQLAlchemyError as exc:
            raise CredentialIssuanceError(
                f"Could not issue credentials for booking {booking_id}"
            ) from exc

    def issue_legacy(self, booking_id: str) -> Credential:
        """
        Single booking-level credential shared by every attendee, for
        bookings imported from before per-attendee issuance.
        """
        booking = self._load_booking(booking_id)
        booking.credential_mode = Booking.LEGACY_SINGLE

        try:
            return self._ensure_credential(booking, attendee_id=None)
        except SQLAlchemyError as exc:
            raise CredentialIssuanceError(
                f"Could not issue legacy credential for booking {booking_id}"
            ) from exc

    def _load_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking

    def _ensure_credential(self, booking: Booking, attendee_id: str | None) -> Credential:
        for credential in self.credential_repository.list_for_booking(booking.id):
            if credential.attendee_id == attendee_id:
                return credential

        binding = CredentialBinding(
            booking_id=booking.id,
            attendee_id=attendee_id,
            event_id=booking.event_id,
        )
        credential = Credential(
            booking=booking,
            attendee_id=attendee_id,
            event_id=booking.event_id,
            token=sign_credential(binding, self.signing_secret),
            verification_code=self._free_code(binding),
            consumed=False,
        )
        self.db.add(credential)
        self.db.flush()

        logger.info(
            "Issued credential. booking_id=%s attendee_id=%s credential_id=%s",
            booking.id,
            attendee_id,
            credential.id,
        )
        return credential

    def _free_code(self, binding: CredentialBinding) -> str:
        for salt in range(MAX_CODE_ATTEMPTS):
            code = derive_verification_code(binding, self.signing_secret, salt=salt)
            if not self.credential_repository.get_by_code(binding.event_id, code):
                return code
        raise CredentialIssuanceError(
            f"No free verification code for booking {binding.booking_id}"
        )
