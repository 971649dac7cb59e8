"""
Signed entry credentials.

A token binds (booking_id, attendee_id, event_id) and carries an
HMAC-SHA256 signature over that binding:

    TKT1.<base64url(booking_id:attendee_id:event_id)>.<base64url(signature)>

Signing is deterministic, so re-deriving a credential for the same seat
always produces the same token. Booking-level (legacy) credentials use
"-" as the attendee id.
"""

import base64
import binascii
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass

TOKEN_PREFIX = "TKT1"
LEGACY_ATTENDEE = "-"
VERIFICATION_CODE_DIGITS = 10

_TOKEN_SHAPE = re.compile(r"^TKT1\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class CredentialBinding:
    booking_id: str
    attendee_id: str | None
    event_id: str

    @property
    def is_legacy(self) -> bool:
        return self.attendee_id is None

    def message(self) -> bytes:
        attendee = self.attendee_id or LEGACY_ATTENDEE
        return f"{self.booking_id}:{attendee}:{self.event_id}".encode("utf-8")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _signature(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def sign_credential(binding: CredentialBinding, secret: str) -> str:
    message = binding.message()
    return ".".join(
        [TOKEN_PREFIX, _b64encode(message), _b64encode(_signature(secret, message))]
    )


def looks_like_token(value: str) -> bool:
    return bool(_TOKEN_SHAPE.match(value))


def verify_credential(token: str, secret: str) -> CredentialBinding | None:
    """
    Returns the binding if the token is well-formed and its signature
    matches, otherwise None.
    """
    if not looks_like_token(token):
        return None

    _, encoded_message, encoded_signature = token.split(".")
    try:
        message = _b64decode(encoded_message)
        presented = _b64decode(encoded_signature)
    except (binascii.Error, ValueError):
        return None

    if not secrets.compare_digest(_signature(secret, message), presented):
        return None

    try:
        booking_id, attendee_id, event_id = message.decode("utf-8").split(":")
    except (UnicodeDecodeError, ValueError):
        return None

    return CredentialBinding(
        booking_id=booking_id,
        attendee_id=None if attendee_id == LEGACY_ATTENDEE else attendee_id,
        event_id=event_id,
    )


def derive_verification_code(
    binding: CredentialBinding,
    secret: str,
    salt: int = 0,
) -> str:
    """
    Ten digit manual-entry code, stable for a given binding and salt.
    The salt only moves past 0 when a code collides within an event.
    """
    digest = hmac.new(
        secret.encode("utf-8"),
        f"code:{salt}:".encode("utf-8") + binding.message(),
        hashlib.sha256,
    ).hexdigest()
    return str(int(digest, 16) % 10**VERIFICATION_CODE_DIGITS).zfill(
        VERIFICATION_CODE_DIGITS
    )


def normalize_verification_code(code: str) -> str:
    return re.sub(r"\D", "", code or "")


def format_verification_code(code: str) -> str:
    # 3-4-3 grouping, as printed on tickets
    digits = normalize_verification_code(code)
    if len(digits) <= 3:
        return digits
    if len(digits) <= 7:
        return f"{digits[:3]}-{digits[3:]}"
    return f"{digits[:3]}-{digits[3:7]}-{digits[7:]}"
