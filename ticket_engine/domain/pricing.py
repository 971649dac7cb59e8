"""
Pricing calculator.

Amounts are integers in the currency's minor unit. Fees are rounded
half-up to a whole minor unit, so a given (unit price, quantity) pair
always produces the same snapshot.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ticket_engine.domain.exceptions import InvalidPriceError
from ticket_engine.domain.policy import BookingPolicy


@dataclass(frozen=True)
class Pricing:
    subtotal: int
    platform_fee: int
    vat: int
    total: int

    @property
    def is_free(self) -> bool:
        return self.total == 0


def _round_minor_unit(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price(
    unit_price: int,
    quantity: int,
    policy: BookingPolicy | None = None,
) -> Pricing:
    policy = policy or BookingPolicy()

    if unit_price < 0:
        raise InvalidPriceError(f"Unit price cannot be negative: {unit_price}")
    if quantity < 1:
        raise InvalidPriceError(f"Quantity must be at least 1: {quantity}")

    # Free inventory never carries fees.
    if unit_price == 0:
        return Pricing(subtotal=0, platform_fee=0, vat=0, total=0)

    subtotal = unit_price * quantity
    platform_fee = _round_minor_unit(Decimal(subtotal) * policy.platform_fee_rate)
    vat = _round_minor_unit(Decimal(subtotal) * policy.vat_rate)

    return Pricing(
        subtotal=subtotal,
        platform_fee=platform_fee,
        vat=vat,
        total=subtotal + platform_fee + vat,
    )
