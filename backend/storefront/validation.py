from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError


# Maximum amount accepted on any money field: 999,999,999.99
MAX_AMOUNT = Decimal("999999999.99")
MAX_QUANTITY = Decimal("999999")


def _to_decimal(field: str, value: Any) -> Decimal:
    """
    Strict decimal coercion for JSON input.

    Accepts ints, floats (via their repr, never binary expansion) and
    plain numeric strings. Rejects booleans, scientific notation, NaN and
    infinities.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain number (scientific notation not allowed)")
        try:
            dec = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
        if not dec.is_finite():
            raise ValidationError(f"{field} must be a finite number")
        return dec
    raise ValidationError(f"{field} must be a number")


def parse_money(field: str, value: Any, *, allow_zero: bool = True) -> Decimal:
    """Money: non-negative, at most 2 decimal places, never rounded."""
    dec = _to_decimal(field, value)
    if dec < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not allow_zero and dec == 0:
        raise ValidationError(f"{field} must be > 0")
    if dec != dec.quantize(Decimal("0.01")):
        raise ValidationError(f"{field} must have at most 2 decimal places")
    if dec > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")
    return dec.quantize(Decimal("0.01"))


def parse_whole_quantity(field: str, value: Any) -> int:
    """
    Checkout quantities are whole units.

    "2", 2 and 2.0 are accepted; 2.5 is rejected, not truncated.
    """
    dec = _to_decimal(field, value)
    if dec != dec.to_integral_value():
        raise ValidationError(f"{field} must be a whole number", details={"value": str(value)})
    if dec <= 0:
        raise ValidationError(f"{field} must be > 0")
    if dec > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return int(dec)


def parse_stock_delta(field: str, value: Any) -> Decimal:
    """Stock-management deltas allow fractional units (3 decimal places)."""
    dec = _to_decimal(field, value)
    if dec == 0:
        raise ValidationError(f"{field} must be non-zero")
    if dec != dec.quantize(Decimal("0.001")):
        raise ValidationError(f"{field} must have at most 3 decimal places")
    if abs(dec) > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return dec.quantize(Decimal("0.001"))


def parse_id(field: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        if value <= 0:
            raise ValidationError(f"{field} must be a positive integer")
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return parse_id(field, int(value.strip()))
    raise ValidationError(f"{field} must be an integer")


def require_object(payload: Any, field: str = "payload") -> dict:
    if not isinstance(payload, dict):
        raise ValidationError(f"{field} must be a JSON object")
    return payload


def require_list(payload: dict, field: str) -> list:
    value = payload.get(field)
    if value is None:
        raise ValidationError(f"{field} is required")
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    return value


def optional_str(payload: dict, field: str, *, max_length: int = 255) -> str | None:
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    value = str(value).strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value


def first_present(payload: dict, *keys: str):
    """Return the first key's value that is present and not None (camelCase/snake_case aliases)."""
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None
