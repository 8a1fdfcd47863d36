"""
Canonical time and number handling for the storefront.

- All internal datetimes are UTC-naive (tzinfo=None).
- API responses serialize datetimes as ISO-8601 'Z' strings.
- Money is Decimal with 2 places, stock quantities Decimal with 3 places.
  Both are serialized as strings so JSON never carries binary floats.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
STOCK_UNIT = Decimal("0.001")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Naive datetimes are treated as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_stock_quantity(value) -> Decimal:
    return Decimal(value).quantize(STOCK_UNIT, rounding=ROUND_HALF_UP)


def money_str(value) -> Optional[str]:
    if value is None:
        return None
    return str(to_money(value))


def quantity_str(value) -> Optional[str]:
    if value is None:
        return None
    return str(to_stock_quantity(value))
