"""Decimal helpers for monetary arithmetic. Amounts are kept at two decimal places."""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(val) -> Decimal:
    if val is None:
        return ZERO
    return val if isinstance(val, Decimal) else Decimal(str(val))


def round_money(val) -> Decimal:
    """Round half-up to the minor currency unit."""
    return to_decimal(val).quantize(CENT, rounding=ROUND_HALF_UP)


def floor_money(val) -> Decimal:
    """Round toward zero to the minor currency unit."""
    return to_decimal(val).quantize(CENT, rounding=ROUND_DOWN)


def percent_of(amount, percent) -> Decimal:
    """amount * percent / 100, rounded half-up."""
    return round_money(to_decimal(amount) * to_decimal(percent) / HUNDRED)
