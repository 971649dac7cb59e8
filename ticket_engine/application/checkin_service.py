import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ticket_engine.application.credential_service import credential_signing_secret
from ticket_engine.domain.caller import CallerContext
from ticket_engine.domain.checkin_payload import (
    CheckInPayload,
    PayloadKind,
    classify_checkin_payload,
)
from ticket_engine.domain.clock import utc_now
from ticket_engine.domain.credentials import verify_credential
from ticket_engine.domain.exceptions import (
    EventMismatchError,
    EventNotFoundError,
    ForbiddenError,
    InvalidCredentialError,
)
from ticket_engine.domain.state_machine import BookingStatus
from ticket_engine.infrastructure.db.models import Attendee, Booking, Credential
from ticket_engine.infrastructure.repositories.credential_repository import CredentialRepository
from ticket_engine.infrastructure.repositories.event_repository import EventRepository

logger = logging.getLogger(__name__)

CHECKED_IN = "CHECKED_IN"
ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"

ATTENDEE_FILTERS = {"all": None, "checked_in": True, "pending": False}


@dataclass(frozen=True)
class CheckInResult:
    result: str
    credential_id: str
    booking_id: str
    attendee_id: str | None
    checked_in_at: datetime | None


@dataclass(frozen=True)
class AttendeeEntry:
    attendee: Attendee
    booking: Booking
    credential: Credential | None

    @property
    def checked_in(self) -> bool:
        return bool(self.credential and self.credential.consumed)


class CheckInService:
    """
    Entry gate. Resolves whatever the scanner sent to exactly one
    credential and consumes it at most once.
    """

    def __init__(self, db: Session, signing_secret: str | None = None):
        self.db = db
        self.signing_secret = signing_secret or credential_signing_secret()
        self.credential_repository = CredentialRepository(db)
        self.event_repository = EventRepository(db)

    def check_in(self, caller: CallerContext, gate_event_id: str, body: Any) -> CheckInResult:
        if not self.event_repository.get_by_id(gate_event_id):
            raise EventNotFoundError(gate_event_id)

        payload = classify_checkin_payload(body)
        credential = self._resolve(payload, gate_event_id)

        if credential.event_id != gate_event_id:
            raise EventMismatchError(gate_event_id, credential.event_id)

        if credential.booking.status != BookingStatus.CONFIRMED:
            raise InvalidCredentialError("Credential is not valid for entry")

        scanned_at = utc_now()
        if not self.credential_repository.consume(credential.id, scanned_at, caller.user_id):
            credential = self.credential_repository.get_by_id(credential.id)
            logger.info(
                "Credential already checked in. credential_id=%s checked_in_at=%s",
                credential.id,
                credential.consumed_at,
            )
            return self._result(ALREADY_CHECKED_IN, credential, credential.consumed_at)

        logger.info(
            "Checked in. event_id=%s credential_id=%s kind=%s gate_user=%s",
            gate_event_id,
            credential.id,
            payload.kind.value,
            caller.user_id,
        )
        return self._result(CHECKED_IN, credential, scanned_at)

    def list_attendees(
        self,
        caller: CallerContext,
        event_id: str,
        status: str = "all",
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[AttendeeEntry], int, dict]:
        event = self.event_repository.get_by_id(event_id)
        if not event:
            raise EventNotFoundError(event_id)
        if event.organizer_id and event.organizer_id != caller.user_id:
            raise ForbiddenError("Only the event organiser can list attendees")

        if status not in ATTENDEE_FILTERS:
            raise ValueError(f"Unknown attendee filter: {status}")

        rows, total = self.credential_repository.attendee_rows_for_event(
            event_id,
            checked_in=ATTENDEE_FILTERS[status],
            page=max(1, page),
            limit=max(1, min(limit, 200)),
        )
        entries = [
            AttendeeEntry(attendee=attendee, booking=booking, credential=credential)
            for attendee, booking, credential in rows
        ]
        return entries, total, self.credential_repository.checkin_stats(event_id)

    def _resolve(self, payload: CheckInPayload, gate_event_id: str) -> Credential:
        if payload.kind == PayloadKind.TOKEN:
            binding = verify_credential(payload.token, self.signing_secret)
            if not binding:
                raise InvalidCredentialError("Credential signature is invalid")
            credential = self.credential_repository.get_by_token(payload.token)

        elif payload.kind == PayloadKind.GATE_CODE:
            credential = self.credential_repository.get_by_code(
                gate_event_id, payload.verification_code
            )

        else:
            credential = self.credential_repository.get_by_code(
                payload.event_id, payload.verification_code
            )
            if (
                credential
                and payload.kind == PayloadKind.QR_DOCUMENT
                and credential.booking_id != payload.booking_id
            ):
                credential = None

        if not credential:
            raise InvalidCredentialError("Credential not recognised")
        return credential

    def _result(
        self,
        result: str,
        credential: Credential,
        checked_in_at: datetime | None,
    ) -> CheckInResult:
        return CheckInResult(
            result=result,
            credential_id=credential.id,
            booking_id=credential.booking_id,
            attendee_id=credential.attendee_id,
            checked_in_at=checked_in_at,
        )
