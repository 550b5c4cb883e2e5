from __future__ import annotations

from decimal import Decimal

from flask import current_app

from .money import to_decimal


MAX_ORDER_ID_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 200
MAX_TABLE_NUMBER_LENGTH = 50


class ValidationError(ValueError):
    """400-level input problem."""


def validate_amount(value) -> Decimal:
    """
    Amounts arrive as JSON numbers in pesos.

    Strings are rejected the same way the payment functions always did:
    the client must send a number.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError("Amount must be a number")
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError("Amount must be a number")

    minimum = current_app.config["MIN_PAYMENT_AMOUNT"]
    maximum = current_app.config["MAX_PAYMENT_AMOUNT"]
    if amount < minimum:
        raise ValidationError(f"Amount must be at least ₱{minimum:.2f}")
    if amount > maximum:
        raise ValidationError(f"Amount must not exceed ₱{maximum:.2f}")
    return amount


def validate_order_id(value) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError("Order ID is required")
    if len(value) > MAX_ORDER_ID_LENGTH:
        raise ValidationError("Order ID is too long")
    return value.strip()


def validate_currency(value) -> str:
    allowed = current_app.config["ALLOWED_CURRENCIES"]
    currency = (value or "PHP").upper() if isinstance(value, str) or value is None else None
    if currency not in allowed:
        raise ValidationError(f"Currency must be one of: {', '.join(allowed)}")
    return currency


def sanitize_string(value, max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    if not value or not isinstance(value, str):
        return ""
    return value.strip()[:max_length]
