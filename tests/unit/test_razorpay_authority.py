# tests/unit/test_razorpay_authority.py

import pytest

razorpay = pytest.importorskip("razorpay")

from ticket_engine.domain.exceptions import PaymentAuthorityError
from ticket_engine.infrastructure.payments.razorpay_authority import RazorpayPaymentAuthority


class _FakePayments:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.fetched = []

    def fetch(self, payment_id):
        self.fetched.append(payment_id)
        if self.error:
            raise self.error
        return self.response


class _FakeClient:
    def __init__(self, payments):
        self.payment = payments


def _authority(**kwargs) -> tuple[RazorpayPaymentAuthority, _FakePayments]:
    payments = _FakePayments(**kwargs)
    return RazorpayPaymentAuthority(_FakeClient(payments)), payments


def test_captured_payment_covering_amount_is_confirmed():
    authority, payments = _authority(response={"status": "captured", "amount": 33750})

    confirmation = authority.confirm("pay_123", 33750)

    assert confirmation.ok
    assert payments.fetched == ["pay_123"]


def test_underpaid_payment_is_rejected():
    authority, _ = _authority(response={"status": "captured", "amount": 100})

    confirmation = authority.confirm("pay_123", 33750)

    assert not confirmation.ok
    assert confirmation.reason == "AMOUNT_TOO_LOW"


def test_uncaptured_payment_is_rejected():
    authority, _ = _authority(response={"status": "authorized", "amount": 33750})

    confirmation = authority.confirm("pay_123", 33750)

    assert not confirmation.ok
    assert confirmation.reason == "PAYMENT_AUTHORIZED"


def test_unknown_payment_id_is_rejected():
    authority, _ = _authority(error=razorpay.errors.BadRequestError("The id provided does not exist"))

    confirmation = authority.confirm("pay_missing", 100)

    assert not confirmation.ok
    assert confirmation.reason == "UNKNOWN_PAYMENT"


def test_provider_outage_raises():
    authority, _ = _authority(error=razorpay.errors.ServerError("upstream unavailable"))

    with pytest.raises(PaymentAuthorityError):
        authority.confirm("pay_123", 100)


def test_from_env_requires_keys(monkeypatch):
    monkeypatch.delenv("RAZORPAY_KEY_ID", raising=False)
    monkeypatch.delenv("RAZORPAY_KEY_SECRET", raising=False)

    with pytest.raises(PaymentAuthorityError):
        RazorpayPaymentAuthority.from_env()


def test_network_failure_raises():
    requests = pytest.importorskip("requests")
    authority, _ = _authority(error=requests.exceptions.ConnectionError("network down"))

    with pytest.raises(PaymentAuthorityError):
        authority.confirm("pay_123", 100)
