"""Commission, service fee, and payout arithmetic."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from marketplace_service.core.exceptions import ServiceError

COMMISSION_RATE = Decimal("0.15")
DEFAULT_SERVICE_FEE = Decimal("50")

_CENTS = Decimal("0.01")


def to_decimal(value: object, field_name: str = "amount") -> Decimal:
    """
    Coerce a number or numeric string to a finite Decimal.

    Floats go through ``str`` so 333.33 stays 333.33 instead of its
    binary approximation.
    """
    if isinstance(value, bool) or value is None:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be a number",
            400,
            {"field": field_name},
        )
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be a number",
            400,
            {"field": field_name},
        ) from exc
    if not amount.is_finite():
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} must be a finite number",
            400,
            {"field": field_name},
        )
    return amount


def to_money(value: object, field_name: str = "amount") -> Decimal:
    """Coerce a value to a Decimal rounded half-up to cents."""
    amount = to_decimal(value, field_name)
    try:
        return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field_name} is too large",
            400,
            {"field": field_name},
        ) from exc


@dataclass(frozen=True)
class PayoutBreakdown:
    """Money split for a completed task."""

    price: Decimal
    service_fee: Decimal
    commission: Decimal
    payout: Decimal
    total_paid: Decimal


def compute_payout(
    price: object,
    service_fee: object | None = None,
    commission_rate: Decimal = COMMISSION_RATE,
) -> PayoutBreakdown:
    """
    Compute commission, tasker payout, and client total for a task price.

    Commission is charged on the price only; the service fee is kept by the
    platform in full. Rounding is half-up to cents and happens after the
    multiplication.
    """
    price_amount = to_decimal(price, "price")
    fee_amount = to_decimal(
        DEFAULT_SERVICE_FEE if service_fee is None else service_fee,
        "service_fee",
    )

    if price_amount < 0:
        raise ServiceError(
            "VALIDATION_ERROR",
            "price must be non-negative",
            400,
            {"field": "price", "value": str(price_amount)},
        )
    if fee_amount < 0:
        raise ServiceError(
            "VALIDATION_ERROR",
            "service_fee must be non-negative",
            400,
            {"field": "service_fee", "value": str(fee_amount)},
        )

    commission = to_money(price_amount * commission_rate, "price")
    return PayoutBreakdown(
        price=price_amount,
        service_fee=fee_amount,
        commission=commission,
        payout=price_amount - commission,
        total_paid=price_amount + fee_amount,
    )
