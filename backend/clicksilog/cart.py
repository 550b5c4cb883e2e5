"""
Cart Aggregator

In-process cart used by the cashier POS and the ordering clients before an
order is placed. Never persisted.

A line is identified by (menu item id, sorted add-on ids, special
instructions); adding the same combination again bumps its quantity.
Subtotal and total are derived from the lines on every read, so they can
never disagree with them.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, Optional

from .money import ZERO, to_decimal
from .services import discount_service


def _get(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def calculate_total_price(base_price, selected_add_ons: Iterable = ()) -> Decimal:
    """Unit price of a line: the item price plus every selected add-on."""
    add_on_total = sum((to_decimal(_get(a, "price", 0)) for a in selected_add_ons), ZERO)
    return to_decimal(base_price) + add_on_total


@dataclass
class AddOn:
    id: str
    name: str
    price: Decimal

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "price": float(self.price)}


@dataclass
class CartLine:
    line_id: str
    item_id: str
    name: str
    price: Decimal
    qty: int
    add_ons: list[AddOn] = field(default_factory=list)
    special_instructions: str = ""
    total_item_price: Decimal = ZERO

    @property
    def signature(self) -> tuple:
        return line_signature(self.item_id, [a.id for a in self.add_ons], self.special_instructions)

    @property
    def line_total(self) -> Decimal:
        return self.total_item_price * self.qty

    def to_dict(self) -> dict:
        return {
            "lineId": self.line_id,
            "id": self.item_id,
            "name": self.name,
            "price": float(self.price),
            "qty": self.qty,
            "addOns": [a.to_dict() for a in self.add_ons],
            "specialInstructions": self.special_instructions,
            "totalItemPrice": float(self.total_item_price),
        }


def line_signature(item_id, add_on_ids: Iterable, special_instructions: str | None) -> tuple:
    return (str(item_id), tuple(sorted(str(a) for a in add_on_ids)), special_instructions or "")


class Cart:
    """
    Ordered collection of cart lines plus an optional discount.

    Lines are addressed by line_id, so two variants of the same menu item
    (different add-ons) can be edited independently.
    """

    def __init__(self):
        self._lines: list[CartLine] = []
        self._line_ids = itertools.count(1)
        self.discount = None
        self.discount_code = ""

    # -------------------------------------------------------------------------
    # Line operations
    # -------------------------------------------------------------------------

    @property
    def items(self) -> list[CartLine]:
        return list(self._lines)

    def add_to_cart(
        self,
        item,
        qty: int = 1,
        selected_add_ons: Iterable = (),
        special_instructions: str = "",
    ) -> CartLine:
        add_ons = [
            AddOn(id=str(_get(a, "id")), name=_get(a, "name", ""), price=to_decimal(_get(a, "price", 0)))
            for a in selected_add_ons
        ]
        item_id = str(_get(item, "id"))
        signature = line_signature(item_id, [a.id for a in add_ons], special_instructions)

        for line in self._lines:
            if line.signature == signature:
                line.qty += qty
                return line

        line = CartLine(
            line_id=f"line-{next(self._line_ids)}",
            item_id=item_id,
            name=_get(item, "name", ""),
            price=to_decimal(_get(item, "price", 0)),
            qty=qty,
            add_ons=add_ons,
            special_instructions=special_instructions or "",
            total_item_price=calculate_total_price(_get(item, "price", 0), add_ons),
        )
        self._lines.append(line)
        return line

    def update_qty(self, line_id: str, qty: int) -> None:
        # Callers clamp qty to >= 1; a zero or negative qty is stored as given.
        for line in self._lines:
            if line.line_id == line_id:
                line.qty = qty

    def remove_from_cart(self, line_id: str) -> None:
        self._lines = [line for line in self._lines if line.line_id != line_id]

    def clear_cart(self) -> None:
        self._lines = []
        self.remove_discount()

    # -------------------------------------------------------------------------
    # Discounts
    # -------------------------------------------------------------------------

    def apply_discount_code(self, code: str, lookup: Optional[Callable] = None) -> dict:
        """
        Look the code up (get_discount_by_code by default) and attach it.

        Returns {"success": bool, "discount"?, "error"?}; a failed lookup
        also clears any previously applied discount.
        """
        lookup = lookup or discount_service.get_discount_by_code
        try:
            discount = lookup(code)
        except Exception as exc:
            self.remove_discount()
            return {"success": False, "error": str(exc) or "Failed to apply discount"}

        if not discount:
            self.remove_discount()
            return {"success": False, "error": "Invalid discount code"}

        self.discount = discount
        self.discount_code = discount_service.normalize_code(code)
        return {"success": True, "discount": discount}

    def remove_discount(self) -> None:
        self.discount = None
        self.discount_code = ""

    # -------------------------------------------------------------------------
    # Derived totals
    # -------------------------------------------------------------------------

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self._lines), ZERO)

    @property
    def discount_calculation(self) -> dict:
        subtotal = self.subtotal
        if not self.discount or subtotal <= 0:
            return {"discountAmount": ZERO, "finalTotal": subtotal}
        return discount_service.apply_discount(self.discount, subtotal)

    @property
    def discount_amount(self) -> Decimal:
        return self.discount_calculation["discountAmount"]

    @property
    def total(self) -> Decimal:
        return self.discount_calculation["finalTotal"]

    def to_order_payload(self, **order_fields) -> dict:
        """Body for order placement (POST /api/orders or place_order)."""
        calc = self.discount_calculation
        payload = {
            "items": [line.to_dict() for line in self._lines],
            "subtotal": float(self.subtotal),
            "total": float(calc["finalTotal"]),
            "discountCode": self.discount_code or None,
            "discountAmount": float(calc["discountAmount"]),
            "discountName": _get(self.discount, "name") if self.discount else None,
        }
        payload.update(order_fields)
        return payload
