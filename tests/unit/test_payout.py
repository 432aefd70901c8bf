"""Unit tests for payout arithmetic."""

from __future__ import annotations

from decimal import Decimal

import pytest

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.services.payout import (
    COMMISSION_RATE,
    DEFAULT_SERVICE_FEE,
    compute_payout,
    to_money,
)

pytestmark = pytest.mark.unit


def test_default_constants():
    assert COMMISSION_RATE == Decimal("0.15")
    assert DEFAULT_SERVICE_FEE == Decimal("50")


def test_round_price_breakdown():
    """A price of 1000 with the default fee splits 150 / 850 / 1050."""
    breakdown = compute_payout(1000)

    assert breakdown.commission == Decimal("150.00")
    assert breakdown.payout == Decimal("850.00")
    assert breakdown.total_paid == Decimal("1050")
    assert breakdown.service_fee == Decimal("50")


def test_commission_rounds_half_up_after_multiplying():
    """333.33 * 0.15 = 49.9995, which rounds up to 50.00."""
    breakdown = compute_payout("333.33", 0)

    assert breakdown.commission == Decimal("50.00")
    assert breakdown.payout == Decimal("283.33")
    assert breakdown.total_paid == Decimal("333.33")


def test_float_input_uses_decimal_representation():
    """Floats are read through their shortest repr, not their binary value."""
    breakdown = compute_payout(333.33, 50)

    assert breakdown.price == Decimal("333.33")
    assert breakdown.commission == Decimal("50.00")


def test_payout_plus_commission_equals_price():
    for price in ("0.01", "0.07", "19.99", "250.50", "12345.67"):
        breakdown = compute_payout(price, 10)
        assert breakdown.commission + breakdown.payout == Decimal(price)


def test_zero_price_is_allowed():
    breakdown = compute_payout(0, 0)
    assert breakdown.commission == Decimal("0.00")
    assert breakdown.payout == Decimal("0.00")


def test_custom_commission_rate():
    breakdown = compute_payout(200, 0, commission_rate=Decimal("0.10"))
    assert breakdown.commission == Decimal("20.00")
    assert breakdown.payout == Decimal("180.00")


@pytest.mark.parametrize(
    ("price", "fee", "field"),
    [
        (-1, 50, "price"),
        (100, -5, "service_fee"),
        ("abc", 50, "price"),
        (True, 50, "price"),
        (100, "NaN", "service_fee"),
    ],
)
def test_invalid_inputs_raise_validation_error(price, fee, field):
    with pytest.raises(ServiceError) as exc_info:
        compute_payout(price, fee)

    assert exc_info.value.error == "VALIDATION_ERROR"
    assert exc_info.value.status_code == 400
    assert exc_info.value.details["field"] == field


def test_to_money_rounds_half_up_to_cents():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money("2.344") == Decimal("2.34")
    assert to_money(10) == Decimal("10.00")


@pytest.mark.parametrize("value", [1e30, "123456789012345678901234567", "1E+999"])
def test_to_money_rejects_amounts_beyond_cent_precision(value):
    with pytest.raises(ServiceError) as exc_info:
        to_money(value, "price")

    assert exc_info.value.error == "VALIDATION_ERROR"
    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"field": "price"}


def test_compute_payout_rejects_oversized_price():
    with pytest.raises(ServiceError) as exc_info:
        compute_payout(1e30, 0)

    assert exc_info.value.details["field"] == "price"
