"""Decimal helpers for money, unit costs and quantities."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import ValidationError

MONEY = Decimal("0.01")
UNIT_COST = Decimal("0.0001")
ZERO = Decimal("0.00")


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Coerce caller input to Decimal.

    Accepts Decimal, int and numeric strings. Floats are rejected: they have
    already lost precision by the time they reach us.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be sent as a string or integer, not a float")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY, rounding=ROUND_HALF_UP)


def round_cost(value: Decimal) -> Decimal:
    return Decimal(value).quantize(UNIT_COST, rounding=ROUND_HALF_UP)


def positive_money(value, field: str = "amount") -> Decimal:
    amount = round_money(to_decimal(value, field))
    if amount <= 0:
        raise ValidationError(f"{field} must be positive")
    return amount


def non_negative_money(value, field: str = "amount") -> Decimal:
    amount = round_money(to_decimal(value, field))
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def positive_quantity(value, field: str = "quantity") -> int:
    # Reject bools and floats; quantities are whole units
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be positive")
    return value


def money_str(value: Decimal | None) -> str | None:
    """JSON-safe rendering that keeps exact decimal digits."""
    if value is None:
        return None
    return str(value)
