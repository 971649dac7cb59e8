# ticket_engine/infrastructure/payments/razorpay_authority.py

import logging
import os

import razorpay
import requests

from ticket_engine.domain.exceptions import PaymentAuthorityError
from ticket_engine.domain.payment import PaymentConfirmation

logger = logging.getLogger(__name__)

CAPTURED = "captured"


class RazorpayPaymentAuthority:
    """Confirms frontend-completed payments against the Razorpay API."""

    def __init__(self, client: razorpay.Client):
        self.client = client

    @classmethod
    def from_env(cls) -> "RazorpayPaymentAuthority":
        key_id = os.getenv("RAZORPAY_KEY_ID")
        key_secret = os.getenv("RAZORPAY_KEY_SECRET")
        if not key_id or not key_secret:
            raise PaymentAuthorityError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )
        return cls(razorpay.Client(auth=(key_id, key_secret)))

    def confirm(self, payment_confirmation_id: str, min_amount: int) -> PaymentConfirmation:
        try:
            payment = self.client.payment.fetch(payment_confirmation_id)
        except razorpay.errors.BadRequestError as exc:
            logger.warning(
                "Razorpay rejected payment lookup. payment_id=%s error=%s",
                payment_confirmation_id,
                exc,
            )
            return PaymentConfirmation(ok=False, reason="UNKNOWN_PAYMENT")
        except (
            razorpay.errors.ServerError,
            razorpay.errors.GatewayError,
            requests.exceptions.RequestException,
        ) as exc:
            raise PaymentAuthorityError(str(exc)) from exc

        status = payment.get("status")
        amount = int(payment.get("amount") or 0)

        if status != CAPTURED:
            return PaymentConfirmation(ok=False, reason=f"PAYMENT_{str(status).upper()}")
        if amount < min_amount:
            return PaymentConfirmation(ok=False, reason="AMOUNT_TOO_LOW")
        return PaymentConfirmation(ok=True)
