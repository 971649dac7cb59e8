# tests/unit/test_credentials.py

from ticket_engine.domain.credentials import (
    CredentialBinding,
    derive_verification_code,
    format_verification_code,
    looks_like_token,
    normalize_verification_code,
    sign_credential,
    verify_credential,
)

SECRET = "unit-test-secret"


def test_token_verifies_and_returns_binding():
    binding = CredentialBinding("booking-1", "attendee-1", "event-1")

    token = sign_credential(binding, SECRET)

    assert token.startswith("TKT1.")
    assert looks_like_token(token)
    assert verify_credential(token, SECRET) == binding


def test_signing_is_deterministic():
    binding = CredentialBinding("booking-1", "attendee-1", "event-1")

    assert sign_credential(binding, SECRET) == sign_credential(binding, SECRET)


def test_legacy_binding_round_trips_without_attendee():
    binding = CredentialBinding("booking-1", None, "event-1")

    verified = verify_credential(sign_credential(binding, SECRET), SECRET)

    assert verified.is_legacy
    assert verified.attendee_id is None


def test_wrong_secret_is_rejected():
    token = sign_credential(CredentialBinding("booking-1", "attendee-1", "event-1"), SECRET)

    assert verify_credential(token, "other-secret") is None


def test_tampered_binding_is_rejected():
    token = sign_credential(CredentialBinding("booking-1", "attendee-1", "event-1"), SECRET)
    forged = sign_credential(CredentialBinding("booking-1", "attendee-1", "event-2"), SECRET)

    prefix, _, signature = token.split(".")
    _, forged_message, _ = forged.split(".")

    assert verify_credential(".".join([prefix, forged_message, signature]), SECRET) is None


def test_malformed_tokens_are_rejected():
    assert verify_credential("not-a-token", SECRET) is None
    assert verify_credential("TKT1.only-one-part", SECRET) is None


def test_verification_code_is_ten_digits_and_salted():
    binding = CredentialBinding("booking-1", "attendee-1", "event-1")

    code = derive_verification_code(binding, SECRET)

    assert len(code) == 10
    assert code.isdigit()
    assert code == derive_verification_code(binding, SECRET)
    assert code != derive_verification_code(binding, SECRET, salt=1)


def test_code_formatting():
    assert format_verification_code("1234567890") == "123-4567-890"
    assert normalize_verification_code("123-4567-890") == "1234567890"
    assert normalize_verification_code(" 123 4567 890 ") == "1234567890"
