"""Utilities for working with monetary values and points."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .exceptions import ValidationError

CENT = Decimal("0.01")
BASIS_POINT = Decimal("0.0001")
ZERO = Decimal("0.00")
# Largest magnitudes that still fit a signed 64-bit cents or points column.
MAX_AMOUNT = Decimal("90000000000000000.00")
MAX_POINTS = 9_000_000_000_000_000_000

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` with two decimal places."""

    if isinstance(value, bool):
        raise ValidationError(f"Unsupported amount type: {type(value)!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    else:
        raise ValidationError(f"Unsupported amount type: {type(value)!r}")

    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"Amount out of range: {value!r}")
    try:
        return result.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc


def to_rate(value: AmountLike) -> Decimal:
    """Return an annual rate quantised to basis points, validated to ``[0, 1]``."""

    if isinstance(value, bool):
        raise ValidationError(f"Unsupported rate type: {type(value)!r}")
    try:
        rate = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid annual rate: {value!r}") from exc
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValidationError("Annual rate must be between 0 and 1.")
    return rate.quantize(BASIS_POINT, rounding=ROUND_HALF_UP)


def require_positive(amount: Decimal, *, allow_zero: bool = False) -> Decimal:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < Decimal("0"):
            raise ValidationError("Amount must be zero or greater.")
    else:
        if amount <= Decimal("0"):
            raise ValidationError("Amount must be greater than zero.")
    return amount


def require_points(points: int) -> int:
    """Ensure ``points`` is a strictly positive whole number."""

    if isinstance(points, bool) or not isinstance(points, int):
        raise ValidationError("Points must be a whole number.")
    if points <= 0:
        raise ValidationError("Points must be greater than zero.")
    if points > MAX_POINTS:
        raise ValidationError(f"Points must not exceed {MAX_POINTS}.")
    return points


def to_cents(amount: Decimal) -> int:
    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def format_currency(amount: Decimal) -> str:
    """Return ``amount`` as a currency formatted string (e.g. ``$12.34``)."""

    return f"${amount.quantize(CENT, rounding=ROUND_HALF_UP):,.2f}"
