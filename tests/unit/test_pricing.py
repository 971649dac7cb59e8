# tests/unit/test_pricing.py

from decimal import Decimal

import pytest

from ticket_engine.domain.exceptions import InvalidPriceError
from ticket_engine.domain.policy import BookingPolicy
from ticket_engine.domain.pricing import Pricing, price


def test_paid_tickets_carry_fee_and_vat():
    assert price(10000, 3) == Pricing(
        subtotal=30000,
        platform_fee=1500,
        vat=2250,
        total=33750,
    )


def test_free_tickets_are_all_zero():
    pricing = price(0, 5)

    assert pricing == Pricing(subtotal=0, platform_fee=0, vat=0, total=0)
    assert pricing.is_free


def test_fees_round_half_up_to_minor_unit():
    # 5% of 30 = 1.5 -> 2, 7.5% of 30 = 2.25 -> 2
    pricing = price(10, 3)

    assert pricing.platform_fee == 2
    assert pricing.vat == 2
    assert pricing.total == 34


def test_rates_come_from_policy():
    policy = BookingPolicy(platform_fee_rate=Decimal("0.10"), vat_rate=Decimal("0"))

    assert price(2500, 2, policy) == Pricing(
        subtotal=5000,
        platform_fee=500,
        vat=0,
        total=5500,
    )


def test_pricing_is_deterministic():
    assert price(12345, 7) == price(12345, 7)


@pytest.mark.parametrize("unit_price, quantity", [(-1, 1), (100, 0)])
def test_invalid_inputs_rejected(unit_price, quantity):
    with pytest.raises(InvalidPriceError):
        price(unit_price, quantity)
