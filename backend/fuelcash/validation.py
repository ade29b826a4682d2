from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .time_utils import parse_iso_date


# Upper bound matches NUMERIC(12, 2) storage: 9,999,999,999.99
MAX_AMOUNT = Decimal("9999999999.99")
CENT = Decimal("0.01")
# NUMERIC(14, 3) for meter values and litres
MAX_QUANTITY = Decimal("99999999999.999")
LITRE = Decimal("0.001")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., reading already settled)."""


class NotFoundError(LookupError):
    """404-level missing entity."""


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float, str)):
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return number


def parse_amount(value: Any, field: str, *, allow_none: bool = False, allow_negative: bool = False) -> Decimal | None:
    """
    Coerce client input into a money Decimal.

    Floats are accepted through their string form so 0.1 stays 0.1.
    Booleans are rejected even though they are ints.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

    amount = _to_decimal(value, field)
    if amount < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT}")

    return quantize_money(amount)


def parse_quantity(value: Any, field: str, *, places: Decimal = LITRE) -> Decimal:
    """Meter readings and litres: non-negative, NUMERIC(14, 3) precision."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    quantity = _to_decimal(value, field)
    if quantity < 0:
        raise ValidationError(f"{field} cannot be negative")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"{field} exceeds maximum of {MAX_QUANTITY}")
    return quantity.quantize(places, rounding=ROUND_HALF_UP)


def parse_id(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{field} must be an integer id")
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError(f"{field} must be an integer id")
    if parsed <= 0:
        raise ValidationError(f"{field} must be an integer id")
    return parsed


def parse_date(value: Any, field: str, *, default: date | None = None) -> date:
    if isinstance(value, date):
        return value
    try:
        parsed = parse_iso_date(value)
    except (AttributeError, TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")
    if parsed is None:
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    return parsed


def parse_id_list(value: Any, field: str) -> list[int]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list of ids")
    ids: list[int] = []
    for raw in value:
        if isinstance(raw, bool):
            raise ValidationError(f"{field} must contain integer ids")
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must contain integer ids")
    return ids


def money_to_str(value: Decimal | None) -> str | None:
    """Render a stored amount for JSON (decimals travel as strings)."""
    if value is None:
        return None
    return str(quantize_money(Decimal(value)))
