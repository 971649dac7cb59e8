from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class PaymentConfirmation:
    ok: bool
    reason: str | None = None


class PaymentAuthority(Protocol):
    """
    External authority that vouches for a payment made outside the engine.

    confirm() must answer whether the confirmation id refers to a settled
    payment covering at least min_amount (currency minor units). Provider
    failures are raised as PaymentAuthorityError.
    """

    def confirm(self, payment_confirmation_id: str, min_amount: int) -> PaymentConfirmation:
        ...
