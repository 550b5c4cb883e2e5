from __future__ import annotations

from ..extensions import db
from clicksilog.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log.

    Rejected webhooks, amount mismatches, and payment-password attempts.
    Append-only. Never stores secrets or passwords.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_type_action", "event_type", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Event classification
    event_type = db.Column(db.String(64), nullable=False, index=True)  # INVALID_WEBHOOK_SIGNATURE, AMOUNT_MISMATCH, PAYMENT_PASSWORD_FAILED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g., "/handlePayMongoWebhook"
    action = db.Column(db.String(128), nullable=True)    # throttle key, order id, ...

    # Event details
    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    # Client context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "eventType": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ipAddress": self.ip_address,
            "occurredAt": to_utc_z(self.occurred_at),
        }
