from __future__ import annotations

import secrets
import string

from ..extensions import db
from ..money import as_json_number
from clicksilog.time_utils import to_utc_z


_ID_ALPHABET = string.ascii_letters + string.digits


def new_document_id(length: int = 20) -> str:
    """Opaque document id in the same shape the ordering clients already store."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class Order(db.Model):
    """
    Customer or cashier order.

    The order row is the single source of truth for what customers and the
    kitchen see. Payment records hang off it through payment_intent_id.

    STATUS: pending_payment -> pending -> preparing -> ready -> completed,
    with cancelled / failed / expired as absorbing alternates.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_timestamp", "status", "timestamp"),
        db.Index("ix_orders_status_created", "status", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_document_id)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_code = db.Column(db.String(64), nullable=True)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_name = db.Column(db.String(255), nullable=True)
    total = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")  # cash, gcash
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=True, index=True)  # pending, paid, failed, expired

    table_number = db.Column(db.String(50), nullable=True, index=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    source = db.Column(db.String(16), nullable=False, default="customer")  # customer, cashier
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    # Payment provider correlation
    payment_intent_id = db.Column(db.String(128), nullable=True, index=True)
    source_id = db.Column(db.String(128), nullable=True)
    payment_method_id = db.Column(db.String(128), nullable=True)
    checkout_session_id = db.Column(db.String(128), nullable=True)
    payment_id = db.Column(db.String(128), nullable=True)
    source_expires_at = db.Column(db.DateTime, nullable=True)

    # Placement writes both timestamp and created_at; list views order by timestamp
    timestamp = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    preparation_start_time = db.Column(db.DateTime, nullable=True)
    ready_time = db.Column(db.DateTime, nullable=True)
    completed_time = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "items": [item.to_dict() for item in self.items],
            "subtotal": as_json_number(self.subtotal),
            "discountCode": self.discount_code,
            "discountAmount": as_json_number(self.discount_amount),
            "discountName": self.discount_name,
            "total": as_json_number(self.total),
            "paymentMethod": self.payment_method,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "tableNumber": self.table_number,
            "userId": self.user_id,
            "source": self.source,
            "customerName": self.customer_name,
            "paymentIntentId": self.payment_intent_id,
            "sourceId": self.source_id,
            "checkoutSessionId": self.checkout_session_id,
            "paymentId": self.payment_id,
            "sourceExpiresAt": to_utc_z(self.source_expires_at),
            "timestamp": to_utc_z(self.timestamp),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
            "paidAt": to_utc_z(self.paid_at),
            "preparationStartTime": to_utc_z(self.preparation_start_time),
            "readyTime": to_utc_z(self.ready_time),
            "completedTime": to_utc_z(self.completed_time),
        }


class OrderItem(db.Model):
    """One line item of a placed order (add-ons flattened to name/price pairs)."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    item_id = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    add_ons = db.Column(db.JSON, nullable=False, default=list)  # [{"name": ..., "price": ...}]
    special_instructions = db.Column(db.Text, nullable=False, default="")
    total_item_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "name": self.name,
            "unitPrice": as_json_number(self.unit_price),
            "quantity": self.quantity,
            "addOns": list(self.add_ons or []),
            "specialInstructions": self.special_instructions or "",
            "totalItemPrice": as_json_number(self.total_item_price),
        }
