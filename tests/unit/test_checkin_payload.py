# tests/unit/test_checkin_payload.py

import json

import pytest

from ticket_engine.domain.checkin_payload import PayloadKind, classify_checkin_payload
from ticket_engine.domain.credentials import CredentialBinding, sign_credential
from ticket_engine.domain.exceptions import InvalidCredentialError

TOKEN = sign_credential(CredentialBinding("booking-1", "attendee-1", "event-1"), "secret")


@pytest.mark.parametrize(
    "body",
    [TOKEN, {"credential": TOKEN}, {"token": TOKEN}, {"qrCode": TOKEN}],
)
def test_opaque_token_shapes(body):
    payload = classify_checkin_payload(body)

    assert payload.kind == PayloadKind.TOKEN
    assert payload.token == TOKEN


def test_qr_document_string():
    document = json.dumps(
        {"bookingId": "booking-1", "eventId": "event-1", "reference": "123-4567-890"}
    )

    payload = classify_checkin_payload({"qrCode": document})

    assert payload.kind == PayloadKind.QR_DOCUMENT
    assert payload.booking_id == "booking-1"
    assert payload.event_id == "event-1"
    assert payload.verification_code == "1234567890"


def test_qr_document_as_body():
    payload = classify_checkin_payload(
        {"bookingId": "booking-1", "eventId": "event-1", "reference": "1234567890"}
    )

    assert payload.kind == PayloadKind.QR_DOCUMENT


def test_bare_code_resolves_against_gate():
    payload = classify_checkin_payload("123-4567-890")

    assert payload.kind == PayloadKind.GATE_CODE
    assert payload.verification_code == "1234567890"


@pytest.mark.parametrize(
    "body, convention",
    [
        ({"event_id": "event-1", "verification_code": "1234567890"}, "event_id/verification_code"),
        ({"eventId": "event-1", "verificationCode": "1234567890"}, "eventId/verificationCode"),
        ({"freeEventId": "event-1", "code": "123 4567 890"}, "freeEventId/code"),
        ({"id": "event-1", "code": "1234567890"}, "id/code"),
    ],
)
def test_event_code_conventions(body, convention):
    payload = classify_checkin_payload(body)

    assert payload.kind == PayloadKind.EVENT_CODE
    assert payload.event_id == "event-1"
    assert payload.verification_code == "1234567890"
    assert payload.convention == convention


def test_first_matching_convention_wins():
    payload = classify_checkin_payload(
        {"event_id": "event-1", "verification_code": "1111111111", "id": "event-2", "code": "2222222222"}
    )

    assert payload.event_id == "event-1"
    assert payload.verification_code == "1111111111"


def test_opaque_field_takes_priority_over_pairs():
    payload = classify_checkin_payload(
        {"token": TOKEN, "eventId": "event-2", "verificationCode": "2222222222"}
    )

    assert payload.kind == PayloadKind.TOKEN


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"foo": "bar"},
        "",
        "hello",
        "12345",
        None,
        ["1234567890"],
        {"eventId": "event-1"},
        {"qrCode": "{not json"},
        {"credential": "{\"bookingId\": \"booking-1\"}"},
    ],
)
def test_unrecognised_payloads_rejected(body):
    with pytest.raises(InvalidCredentialError):
        classify_checkin_payload(body)
