# utils/money.py - Integer minor-unit conversion for provider amounts
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


def to_minor_units(value: Any) -> int:
    """
    Convert a decimal major-unit amount ("10.99", 10.99, 10) to minor units (1099).

    Strings are parsed as decimals so "0.29" becomes 29, not 28.
    Missing or empty values count as zero.
    """
    if value is None or value == "":
        return 0
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def minor_units(value: Any) -> int:
    """Coerce an amount that is already in minor units (Square money objects)"""
    if value is None or value == "":
        return 0
    return int(value)


def parse_quantity(value: Optional[Any], default: int = 1) -> int:
    """Quantities arrive as "2", "2.000" or 2"""
    if value is None or value == "":
        return default
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError, OverflowError):
        return default
