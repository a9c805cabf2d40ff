"""
Conversion between coin-denominated decimals and integer units.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

# BBC has 6 decimal places
BBC_DECIMALS = 6


def coins_to_units(value: str | int | float | Decimal, decimals: int = BBC_DECIMALS) -> int:
    """
    Convert a coin amount (as returned by the node) to integer units.

    Floats go through ``str`` first so that 0.1 stays 0.1.

    Raises:
        ValueError: If the value is not a number, is negative, or has more
            precision than ``decimals`` allows.
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e

    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if amount < 0:
        raise ValueError(f"Negative amount: {value!r}")

    units = amount.scaleb(decimals)
    if units != units.to_integral_value():
        raise ValueError(f"Amount {value!r} exceeds {decimals} decimal places")
    return int(units)


def units_to_coins(units: int, decimals: int = BBC_DECIMALS) -> str:
    """Format integer units as a plain decimal coin string."""
    if units < 0:
        raise ValueError(f"Negative amount: {units}")
    coins = Decimal(units).scaleb(-decimals)
    return f"{coins:.{decimals}f}"
