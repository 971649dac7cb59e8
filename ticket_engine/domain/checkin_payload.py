"""
Classification of check-in payloads.

Gate clients have sent credentials in several shapes over time. The
payload is classified once, in this priority order:

1. An opaque credential string, sent as a bare JSON string or under
   the ``credential``, ``token`` or ``qrCode`` field:
   a. a signed token (``TKT1.<binding>.<signature>``);
   b. a printed QR document, a JSON object string carrying
      ``bookingId``, ``eventId`` and ``reference``;
   c. a bare verification code, resolved against the gate's event.
2. A QR document sent as the body itself.
3. An (event id, verification code) pair, under the first matching
   field-name convention:
   ``event_id``/``verification_code``, ``eventId``/``verificationCode``,
   ``freeEventId``/``code``, ``id``/``code``.

Anything else is rejected.
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ticket_engine.domain.credentials import (
    VERIFICATION_CODE_DIGITS,
    looks_like_token,
    normalize_verification_code,
)
from ticket_engine.domain.exceptions import InvalidCredentialError

OPAQUE_FIELDS = ("credential", "token", "qrCode")

CODE_FIELD_CONVENTIONS: tuple[tuple[str, str], ...] = (
    ("event_id", "verification_code"),
    ("eventId", "verificationCode"),
    ("freeEventId", "code"),
    ("id", "code"),
)

QR_DOCUMENT_FIELDS = ("bookingId", "eventId", "reference")

_TYPED_CODE = re.compile(r"^[\d\s-]+$")


class PayloadKind(str, Enum):
    TOKEN = "TOKEN"
    QR_DOCUMENT = "QR_DOCUMENT"
    GATE_CODE = "GATE_CODE"
    EVENT_CODE = "EVENT_CODE"


@dataclass(frozen=True)
class CheckInPayload:
    kind: PayloadKind
    token: str | None = None
    event_id: str | None = None
    verification_code: str | None = None
    booking_id: str | None = None
    convention: str | None = None


def _non_empty_str(value: Any) -> str | None:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        text = str(value).strip()
        return text or None
    return None


def _qr_document(document: dict) -> CheckInPayload | None:
    booking_id, event_id, reference = (
        _non_empty_str(document.get(name)) for name in QR_DOCUMENT_FIELDS
    )
    if not (booking_id and event_id and reference):
        return None
    return CheckInPayload(
        kind=PayloadKind.QR_DOCUMENT,
        booking_id=booking_id,
        event_id=event_id,
        verification_code=normalize_verification_code(reference),
        convention="bookingId/eventId/reference",
    )


def _classify_string(raw: str) -> CheckInPayload | None:
    text = raw.strip()
    if not text:
        return None

    if looks_like_token(text):
        return CheckInPayload(kind=PayloadKind.TOKEN, token=text)

    if text.startswith("{"):
        try:
            document = json.loads(text)
        except json.JSONDecodeError:
            return None
        if isinstance(document, dict):
            return _qr_document(document)
        return None

    code = normalize_verification_code(text)
    if _TYPED_CODE.match(text) and len(code) == VERIFICATION_CODE_DIGITS:
        return CheckInPayload(kind=PayloadKind.GATE_CODE, verification_code=code)

    return None


def _classify_mapping(body: dict) -> CheckInPayload | None:
    for name in OPAQUE_FIELDS:
        value = body.get(name)
        if isinstance(value, str) and value.strip():
            return _classify_string(value)

    document = _qr_document(body)
    if document:
        return document

    for event_field, code_field in CODE_FIELD_CONVENTIONS:
        event_id = _non_empty_str(body.get(event_field))
        code = _non_empty_str(body.get(code_field))
        if event_id and code:
            return CheckInPayload(
                kind=PayloadKind.EVENT_CODE,
                event_id=event_id,
                verification_code=normalize_verification_code(code),
                convention=f"{event_field}/{code_field}",
            )

    return None


def classify_checkin_payload(body: Any) -> CheckInPayload:
    payload = None
    if isinstance(body, str):
        payload = _classify_string(body)
    elif isinstance(body, dict):
        payload = _classify_mapping(body)

    if payload is None:
        raise InvalidCredentialError("Unrecognised check-in payload")
    return payload
