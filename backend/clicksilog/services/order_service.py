# Overview: Order placement, status transitions, and order change publication.

"""
Order Service

STATUS LIFECYCLE:
    pending_payment -> pending -> preparing -> ready -> completed
    cancelled / failed / expired are absorbing alternates.

- pending_payment: electronic (GCash / QR PH) payment not yet confirmed
- pending: payment assured (cash, or already-paid electronic); kitchen queue
- completed, cancelled, failed, expired: terminal, never change again

Status only moves forward along the chain. Every committed change is
published on the order_updated signal with the order id as sender.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..extensions import db, order_updated
from ..models import Order, OrderItem
from ..money import ZERO, to_decimal
from clicksilog.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


logger = logging.getLogger(__name__)


class OrderError(Exception):
    """Raised for invalid order payloads."""
    pass


class OrderNotFoundError(OrderError):
    pass


class InvalidTransitionError(OrderError):
    pass


# =============================================================================
# STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PENDING = "pending"
STATUS_PREPARING = "preparing"
STATUS_READY = "ready"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_FAILED = "failed"
STATUS_EXPIRED = "expired"

STATUS_CHAIN = [
    STATUS_PENDING_PAYMENT,
    STATUS_PENDING,
    STATUS_PREPARING,
    STATUS_READY,
    STATUS_COMPLETED,
]
ABSORBING_STATUSES = (STATUS_CANCELLED, STATUS_FAILED, STATUS_EXPIRED)
TERMINAL_STATUSES = (STATUS_COMPLETED,) + ABSORBING_STATUSES
VALID_STATUSES = STATUS_CHAIN + list(ABSORBING_STATUSES)

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_GCASH = "gcash"
VALID_PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_GCASH)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_EXPIRED = "expired"

VALID_SOURCES = ("customer", "cashier")

# Timestamp stamped when an order enters a kitchen status
STATUS_TIME_FIELDS = {
    STATUS_PREPARING: "preparation_start_time",
    STATUS_READY: "ready_time",
    STATUS_COMPLETED: "completed_time",
}


def can_transition(current: str, new: str) -> bool:
    """Forward along the chain, or into an absorbing status, from any non-terminal status."""
    if current in TERMINAL_STATUSES:
        return False
    if new in ABSORBING_STATUSES:
        return True
    if new not in STATUS_CHAIN or current not in STATUS_CHAIN:
        return False
    return STATUS_CHAIN.index(new) > STATUS_CHAIN.index(current)


# =============================================================================
# PLACEMENT
# =============================================================================

def _normalize_item(raw: dict, position: int) -> OrderItem:
    name = raw.get("name")
    if not name:
        raise OrderError("Each item needs a name")

    quantity = raw.get("quantity", raw.get("qty", 1))
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise OrderError(f"Invalid quantity for {name}")

    try:
        unit_price = to_decimal(raw.get("price", raw.get("unitPrice", 0)))
        add_ons = [
            {"name": a.get("name", ""), "price": float(to_decimal(a.get("price", 0)))}
            for a in (raw.get("addOns") or [])
        ]
        total_item_price = raw.get("totalItemPrice")
        total_item_price = to_decimal(total_item_price) if total_item_price is not None else unit_price
    except (ValueError, AttributeError):
        raise OrderError(f"Invalid price for {name}")

    return OrderItem(
        position=position,
        item_id=str(raw.get("itemId", raw.get("id"))) if raw.get("itemId", raw.get("id")) is not None else None,
        name=name,
        unit_price=unit_price,
        quantity=quantity,
        add_ons=add_ons,
        special_instructions=raw.get("specialInstructions") or "",
        total_item_price=total_item_price,
    )


def place_order(payload: dict, *, status: str = STATUS_PENDING, payment_status: str | None = None) -> Order:
    """
    Persist a cart as an order.

    Items are flattened (qty -> quantity, add-ons -> {name, price}) and
    both timestamp and created_at are stamped with the placement time.

    GCash orders are placed with status pending_payment and payment_status
    pending before any payment intent exists, so the order id can travel in
    the intent metadata and the webhook has a stable key to search by.
    """
    items = payload.get("items") or []
    if not items:
        raise OrderError("Order must contain at least one item")

    payment_method = payload.get("paymentMethod") or PAYMENT_METHOD_CASH
    if payment_method not in VALID_PAYMENT_METHODS:
        raise OrderError(f"Invalid payment method: {payment_method}")

    source = payload.get("source") or "customer"
    if source not in VALID_SOURCES:
        raise OrderError(f"Invalid order source: {source}")

    if payment_method == PAYMENT_METHOD_GCASH and status == STATUS_PENDING:
        status = STATUS_PENDING_PAYMENT
        payment_status = payment_status or PAYMENT_STATUS_PENDING
    if status not in (STATUS_PENDING, STATUS_PENDING_PAYMENT):
        raise OrderError(f"Orders cannot be placed with status {status}")

    order_items = [_normalize_item(raw, position) for position, raw in enumerate(items)]

    try:
        subtotal = to_decimal(payload.get("subtotal") or payload.get("total") or 0)
        discount_amount = to_decimal(payload.get("discountAmount") or 0)
        total = to_decimal(payload["total"]) if payload.get("total") is not None else max(ZERO, subtotal - discount_amount)
    except ValueError:
        raise OrderError("Invalid order amounts")

    now = utcnow()
    order = Order(
        subtotal=subtotal,
        discount_code=payload.get("discountCode") or None,
        discount_amount=discount_amount,
        discount_name=payload.get("discountName") or None,
        total=total,
        payment_method=payment_method,
        status=status,
        payment_status=payment_status,
        table_number=str(payload["tableNumber"]) if payload.get("tableNumber") is not None else None,
        user_id=payload.get("userId"),
        source=source,
        customer_name=payload.get("customerName"),
        customer_email=payload.get("customerEmail"),
        customer_phone=payload.get("customerPhone"),
        timestamp=now,
        created_at=now,
        updated_at=now,
    )
    order.items = order_items

    db.session.add(order)
    db.session.commit()

    logger.info("Order %s placed (%s, %s, total=%s)", order.id, payment_method, status, total)
    publish_order(order)
    return order


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def list_orders(
    status: str | None = None,
    table_number: str | None = None,
    user_id: str | None = None,
) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    if table_number:
        query = query.filter(Order.table_number == str(table_number))
    if user_id:
        query = query.filter(Order.user_id == user_id)
    return query.order_by(Order.timestamp.asc()).all()


# =============================================================================
# STATUS UPDATES
# =============================================================================

def update_status(order_id: str, status: str, extra: dict | None = None) -> Order:
    """
    Move an order to a new status and stamp the matching time field.

    Raises InvalidTransitionError for backward moves and for any move out
    of a terminal status.
    """
    if status not in VALID_STATUSES:
        raise InvalidTransitionError(f"Invalid status: {status}")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")

        if not can_transition(order.status, status):
            raise InvalidTransitionError(f"Cannot move order from {order.status} to {status}")

        now = utcnow()
        previous = order.status
        order.status = status
        order.updated_at = now
        time_field = STATUS_TIME_FIELDS.get(status)
        if time_field:
            setattr(order, time_field, now)
        for key, value in (extra or {}).items():
            setattr(order, key, value)

        db.session.commit()
        logger.info("Order %s status %s -> %s", order.id, previous, status)
        return order

    order = run_with_retry(_op)
    publish_order(order)
    return order


def attach_payment_reference(order: Order, **fields) -> Order:
    """Record provider correlation ids on an order; the caller commits."""
    for key, value in fields.items():
        setattr(order, key, value)
    order.updated_at = utcnow()
    return order


# =============================================================================
# CHANGE PUBLICATION
# =============================================================================

def publish_order(order: Order) -> None:
    """Send the committed order snapshot to everyone subscribed to it."""
    order_updated.send(order.id, snapshot=order.to_dict())


def subscribe_order(order_id: str, callback: Callable[[dict], None]) -> Callable[[], None]:
    """
    Call callback(snapshot) after every committed change of one order.

    Returns the unsubscribe function; call it on teardown.
    """
    def _receiver(sender, snapshot=None, **_):
        callback(snapshot)

    order_updated.connect(_receiver, sender=order_id, weak=False)

    def unsubscribe():
        order_updated.disconnect(_receiver, sender=order_id)

    return unsubscribe
