# Overview: Discount validation and calculation, plus discount code storage.

"""
Discount Service

The calculator functions are pure: they accept a Discount row or any
mapping with the same fields (type, value, minOrder, maxDiscount, ...), so
the cart and the order endpoints share one implementation.

RULES:
- No discount, a non-positive subtotal, or a subtotal under minOrder -> 0
- percentage: subtotal * value / 100, capped at maxDiscount when set
- fixed: value, never more than the subtotal
- finalTotal = max(0, subtotal - discountAmount)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Discount
from ..money import ZERO, quantize, to_decimal
from clicksilog.time_utils import parse_iso_datetime, utcnow


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
VALID_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


class DiscountError(Exception):
    """Raised for invalid discount definitions or unknown codes."""
    pass


# Field names as stored on the model, and as clients send them
_FIELD_ALIASES = {
    "min_order": "minOrder",
    "max_discount": "maxDiscount",
    "valid_from": "validFrom",
    "valid_until": "validUntil",
}


def _field(discount, name: str):
    if isinstance(discount, dict):
        if name in discount:
            return discount[name]
        return discount.get(_FIELD_ALIASES.get(name, name))
    return getattr(discount, name, None)


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def is_discount_valid(discount, now: datetime | None = None) -> bool:
    """Active flag plus the [valid_from, valid_until] window (either end may be open)."""
    if not discount or not _field(discount, "active"):
        return False
    now = now or utcnow()
    valid_from = parse_iso_datetime(_field(discount, "valid_from"))
    valid_until = parse_iso_datetime(_field(discount, "valid_until"))
    if valid_from and valid_from > now:
        return False
    if valid_until and valid_until < now:
        return False
    return True


def calculate_discount(discount, subtotal) -> Decimal:
    subtotal = to_decimal(subtotal)
    if not discount or subtotal <= 0:
        return ZERO

    min_order = _field(discount, "min_order")
    if min_order and subtotal < to_decimal(min_order):
        return ZERO

    discount_type = _field(discount, "type")
    value = to_decimal(_field(discount, "value"))
    amount = ZERO

    if discount_type == DISCOUNT_PERCENTAGE:
        amount = quantize(subtotal * value / Decimal(100))
        max_discount = _field(discount, "max_discount")
        if max_discount and amount > to_decimal(max_discount):
            amount = to_decimal(max_discount)
    elif discount_type == DISCOUNT_FIXED:
        amount = min(value, subtotal)

    return max(ZERO, amount)


def apply_discount(discount, subtotal) -> dict:
    subtotal = to_decimal(subtotal)
    discount_amount = calculate_discount(discount, subtotal)
    return {
        "subtotal": subtotal,
        "discountAmount": discount_amount,
        "discountCode": _field(discount, "code") if discount else None,
        "discountName": _field(discount, "name") if discount else None,
        "finalTotal": max(ZERO, subtotal - discount_amount),
    }


# =============================================================================
# LOOKUP & MANAGEMENT
# =============================================================================

def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def get_discount_by_code(code: str, now: datetime | None = None) -> Discount | None:
    """
    Find an active discount by code.

    Validity is re-checked on every lookup, so an expired code is rejected
    even while its active flag is still set.
    """
    normalized = normalize_code(code)
    if not normalized:
        return None
    discount = db.session.query(Discount).filter(
        Discount.code == normalized,
        Discount.active.is_(True),
    ).first()
    if not discount or not is_discount_valid(discount, now):
        return None
    return discount


def list_active_discounts(now: datetime | None = None) -> list[Discount]:
    discounts = db.session.query(Discount).filter(Discount.active.is_(True)).order_by(Discount.code).all()
    return [d for d in discounts if is_discount_valid(d, now)]


def _clean_discount_fields(data: dict, *, partial: bool) -> dict:
    cleaned = {}

    if "code" in data or not partial:
        code = normalize_code(data.get("code"))
        if not code:
            raise DiscountError("Discount code is required")
        cleaned["code"] = code

    if "type" in data or not partial:
        if data.get("type") not in VALID_DISCOUNT_TYPES:
            raise DiscountError(f"Discount type must be one of {list(VALID_DISCOUNT_TYPES)}")
        cleaned["type"] = data["type"]

    for key, attr in (("value", "value"), ("minOrder", "min_order"), ("maxDiscount", "max_discount")):
        if key in data:
            raw = data[key]
            if raw is None and key != "value":
                cleaned[attr] = None
                continue
            try:
                amount = to_decimal(raw)
            except ValueError:
                raise DiscountError(f"{key} must be a number")
            if amount < 0:
                raise DiscountError(f"{key} must not be negative")
            cleaned[attr] = amount
        elif key == "value" and not partial:
            raise DiscountError("Discount value is required")

    if cleaned.get("type", data.get("type")) == DISCOUNT_PERCENTAGE and cleaned.get("value", ZERO) > 100:
        raise DiscountError("Percentage discounts cannot exceed 100")

    for key, attr in (("validFrom", "valid_from"), ("validUntil", "valid_until")):
        if key in data:
            try:
                cleaned[attr] = parse_iso_datetime(data[key])
            except ValueError:
                raise DiscountError(f"{key} must be an ISO-8601 datetime")

    if "name" in data:
        cleaned["name"] = (data["name"] or "").strip() or None
    if "active" in data:
        cleaned["active"] = bool(data["active"])

    return cleaned


def create_discount(data: dict) -> Discount:
    fields = _clean_discount_fields(data, partial=False)
    if db.session.query(Discount).filter_by(code=fields["code"]).first():
        raise DiscountError(f"Discount code {fields['code']} already exists")
    discount = Discount(**fields)
    db.session.add(discount)
    db.session.commit()
    return discount


def update_discount(discount_id: int, data: dict) -> Discount | None:
    discount = db.session.get(Discount, discount_id)
    if not discount:
        return None
    for attr, value in _clean_discount_fields(data, partial=True).items():
        setattr(discount, attr, value)
    db.session.commit()
    return discount
