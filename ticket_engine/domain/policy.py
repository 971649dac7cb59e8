import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class BookingPolicy:
    """
    Business constants for booking and pricing.
    Kept out of the control flow so they can change per deployment.
    """

    max_tickets_per_booking: int = 10
    platform_fee_rate: Decimal = Decimal("0.05")
    vat_rate: Decimal = Decimal("0.075")
    reservation_ttl: timedelta = timedelta(minutes=15)
    payment_timeout_seconds: float = 45.0
    currency: str = "NGN"

    @classmethod
    def from_env(cls) -> "BookingPolicy":
        return cls(
            max_tickets_per_booking=int(os.getenv("MAX_TICKETS_PER_BOOKING", "10")),
            platform_fee_rate=Decimal(os.getenv("PLATFORM_FEE_RATE", "0.05")),
            vat_rate=Decimal(os.getenv("VAT_RATE", "0.075")),
            reservation_ttl=timedelta(
                minutes=float(os.getenv("RESERVATION_TTL_MINUTES", "15"))
            ),
            payment_timeout_seconds=float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "45")),
            currency=os.getenv("CURRENCY", "NGN"),
        )
