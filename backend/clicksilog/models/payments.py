from __future__ import annotations

from ..extensions import db
from ..money import as_json_number
from clicksilog.time_utils import to_utc_z


class PaymentRecord(db.Model):
    """
    Provider-side payment attempt for an order (intent, QR PH, or checkout).

    Secondary, denormalized view: the Order carries the status customers
    see. Records are written in the same transaction as the order so the
    two cannot drift.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_status_expires", "status", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    payment_intent_id = db.Column(db.String(128), nullable=True, unique=True)
    payment_method_id = db.Column(db.String(128), nullable=True)
    checkout_session_id = db.Column(db.String(128), nullable=True, index=True)
    kind = db.Column(db.String(16), nullable=False, default="qrph")  # intent, qrph, checkout

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="PHP")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)  # pending, succeeded, failed, expired
    paymongo_payment_id = db.Column(db.String(128), nullable=True)

    qr_code_image_url = db.Column(db.Text, nullable=True)
    checkout_url = db.Column(db.Text, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    client_ip = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=True)

    order = db.relationship("Order", backref=db.backref("payment_records", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "paymentIntentId": self.payment_intent_id,
            "paymentMethodId": self.payment_method_id,
            "checkoutSessionId": self.checkout_session_id,
            "kind": self.kind,
            "amount": as_json_number(self.amount),
            "currency": self.currency,
            "status": self.status,
            "paymongoPaymentId": self.paymongo_payment_id,
            "expiresAt": to_utc_z(self.expires_at),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class WebhookEvent(db.Model):
    """
    Ledger of provider webhook deliveries, keyed by the provider event id.

    A delivery whose event id is already here is acknowledged without being
    applied again.
    """
    __tablename__ = "webhook_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(128), nullable=False, unique=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    payment_intent_id = db.Column(db.String(128), nullable=True, index=True)
    client_ip = db.Column(db.String(45), nullable=True)

    processed = db.Column(db.Boolean, nullable=False, default=False)
    outcome = db.Column(db.String(32), nullable=True)  # applied, ignored, no_match
    orders_updated = db.Column(db.Integer, nullable=False, default=0)

    received_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "paymentIntentId": self.payment_intent_id,
            "processed": self.processed,
            "outcome": self.outcome,
            "ordersUpdated": self.orders_updated,
            "receivedAt": to_utc_z(self.received_at),
            "processedAt": to_utc_z(self.processed_at),
        }
