"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
import re
from typing import Any

CENTS = Decimal("0.01")


def parse_amount(value: Any) -> Decimal:
    """Parse an amount into a Decimal.

    Handles various formats:
    - "123.45", "-123.45", "$123.45", "1,234.56"
    - "(123.45)" (negative in parentheses)
    - ints and floats decoded from JSON (converted through str, never float math)
    - UP Bank money objects: {"value": "-65.99", "valueInBaseUnits": -6599}

    Args:
        value: Amount in any of the supported shapes

    Returns:
        Decimal amount

    Raises:
        ValueError: If the amount cannot be parsed
    """
    if isinstance(value, dict):
        if value.get("valueInBaseUnits") is not None:
            minor = value["valueInBaseUnits"]
            if isinstance(minor, bool) or not isinstance(minor, (int, str)):
                raise ValueError(f"Could not parse valueInBaseUnits {minor!r}")
            try:
                return from_minor_units(int(minor))
            except ValueError as e:
                raise ValueError(f"Could not parse valueInBaseUnits {minor!r}: {e}")
        value = value.get("value")

    if isinstance(value, bool) or value is None:
        raise ValueError(f"Could not parse amount {value!r}")

    if isinstance(value, Decimal):
        return value

    if isinstance(value, (int, float)):
        return Decimal(str(value))

    amount_str = str(value).strip()
    if not amount_str:
        raise ValueError("Empty amount string")

    # Handle parentheses notation (negative)
    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    amount_str = re.sub(r"[$€£¥]", "", amount_str)
    amount_str = amount_str.replace(",", "").strip()

    try:
        amount = Decimal(amount_str)
    except InvalidOperation as e:
        raise ValueError(f"Could not parse amount '{amount_str}': {e}")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{amount_str}'")
    return -amount if is_negative else amount


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to integer cents, rounding half-even."""
    return int((amount / CENTS).to_integral_value())


def from_minor_units(minor: int) -> Decimal:
    """Convert integer cents back to a two-place Decimal."""
    return (Decimal(minor) * CENTS).quantize(CENTS)
