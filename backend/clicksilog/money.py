"""
Peso amount helpers.

Order and payment amounts are Decimal pesos quantized to centavos.
PayMongo speaks integer minor units, so every value crossing the provider
boundary goes through to_minor / from_minor.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTAVO = Decimal("0.01")
ZERO = Decimal("0.00")

# Two amounts closer than this are considered equal (order total checks)
AMOUNT_TOLERANCE = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to a quantized Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError("Amount must be a number")
    if isinstance(value, float):
        # go through str() so 0.1 stays 0.1
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return quantize(amount)


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENTAVO, rounding=ROUND_HALF_UP)


def to_minor(amount) -> int:
    """₱12.34 -> 1234"""
    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor(minor_units) -> Decimal:
    """1234 -> ₱12.34"""
    return quantize(Decimal(int(minor_units)) / 100)


def amounts_match(a, b) -> bool:
    return abs(to_decimal(a) - to_decimal(b)) <= AMOUNT_TOLERANCE


def as_json_number(amount: Decimal | None) -> float | None:
    """Amounts leave the API as JSON numbers with two decimals."""
    if amount is None:
        return None
    return float(quantize(amount))
