# Overview: PayMongo webhook verification and event application.

"""
Webhook Service

Applies PayMongo payment events to orders and payment records.

SIGNATURE:
    Paymongo-Signature: t=<unix ts>,te=<test hex>,li=<live hex>
    hex = HMAC-SHA256(webhook_secret, "<t>.<raw body>")
Either te or li may carry the signature; comparison is constant-time.

EVENTS:
- paid:    payment.succeeded, payment.paid, payment_intent.succeeded,
           checkout_session.payment.paid
- failed:  payment.failed, payment_intent.failed
- expired: source.expired, qrph.expired, payment_intent.canceled
- anything else is acknowledged and ignored

IDEMPOTENCY:
- Every event id is written to webhook_events; a repeat delivery is
  acknowledged as a duplicate without touching orders
- paymentStatus "paid" is absorbing: late failed/expired events never
  regress it, while succeeded after failed still moves to paid
- Ledger row, orders and payment records commit in one transaction
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, PaymentRecord, WebhookEvent
from ..money import amounts_match, from_minor
from clicksilog.time_utils import utcnow
from . import order_service
from .order_service import PAYMENT_STATUS_EXPIRED, PAYMENT_STATUS_FAILED, PAYMENT_STATUS_PAID
from .payment_service import (
    RECORD_EXPIRED,
    RECORD_FAILED,
    RECORD_PENDING,
    mark_order_paid,
    mark_records_succeeded,
)
from .security_service import log_security_event


logger = logging.getLogger(__name__)


PAID_EVENTS = (
    "payment.succeeded",
    "payment.paid",
    "payment_intent.succeeded",
    "checkout_session.payment.paid",
)
FAILED_EVENTS = ("payment.failed", "payment_intent.failed")
EXPIRED_EVENTS = ("source.expired", "qrph.expired", "payment_intent.canceled")

WEBHOOK_RESOURCE = "/handlePayMongoWebhook"


class WebhookSignatureError(Exception):
    """Missing or invalid Paymongo-Signature header (401)."""
    pass


class WebhookPayloadError(ValueError):
    """Body is not a PayMongo event (400)."""
    pass


@dataclass
class WebhookOutcome:
    event_id: str
    event_type: str
    outcome: str  # applied, ignored, no_match, duplicate
    orders_updated: list[str] = field(default_factory=list)

    @property
    def duplicate(self) -> bool:
        return self.outcome == "duplicate"

    def to_dict(self) -> dict:
        body = {"received": True}
        if self.duplicate:
            body["duplicate"] = True
        return body


# =============================================================================
# SIGNATURE
# =============================================================================

def parse_signature_header(header: str) -> dict:
    parts = {}
    for item in (header or "").split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key] = value
    return parts


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = timestamp.encode() + b"." + raw_body
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, header: str | None, secret: str) -> None:
    """Raise WebhookSignatureError unless header signs raw_body with secret."""
    if not header:
        raise WebhookSignatureError("Signature required")

    parts = parse_signature_header(header)
    timestamp = parts.get("t")
    candidates = [parts[k] for k in ("te", "li") if parts.get(k)]
    if not timestamp or not candidates:
        raise WebhookSignatureError("Invalid signature")

    expected = compute_signature(secret, timestamp, raw_body)
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise WebhookSignatureError("Invalid signature")


def record_invalid_signature(reason: str, ip_address: str | None, user_agent: str | None = None) -> None:
    log_security_event(
        event_type="INVALID_WEBHOOK_SIGNATURE",
        success=False,
        resource=WEBHOOK_RESOURCE,
        action="verify_signature",
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )


# =============================================================================
# PAYLOAD
# =============================================================================

@dataclass
class PaymentEvent:
    event_id: str
    event_type: str
    resource_id: str | None
    payment_intent_id: str | None
    payment_id: str | None
    amount: Decimal | None
    metadata: dict


def _is_event_type(value) -> bool:
    return isinstance(value, str) and bool(value)


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def parse_event(payload) -> PaymentEvent:
    """
    Accept both {data: {id, type, attributes}} and PayMongo's envelope
    {data: {id, type: "event", attributes: {type, data: {id, attributes}}}}.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Invalid webhook payload")
    event = payload.get("data")
    if not isinstance(event, dict) or not event.get("id") or not _is_event_type(event.get("type")):
        raise WebhookPayloadError("Invalid webhook payload")

    event_id = str(event["id"])
    event_type = event["type"]
    attrs = event.get("attributes") or {}
    if not isinstance(attrs, dict):
        raise WebhookPayloadError("Invalid webhook payload")

    if event_type == "event" and isinstance(attrs.get("data"), dict):
        inner_type = attrs.get("type")
        if inner_type is not None and not _is_event_type(inner_type):
            raise WebhookPayloadError("Invalid webhook payload")
        event_type = inner_type or event_type
        resource = attrs["data"]
        resource_attrs = resource.get("attributes") or {}
        if not isinstance(resource_attrs, dict):
            raise WebhookPayloadError("Invalid webhook payload")
        attrs = dict(resource_attrs)
        attrs.setdefault("id", resource.get("id"))

    resource_id = attrs.get("id")
    intent = attrs.get("payment_intent")
    intent_id = attrs.get("payment_intent_id") or (intent.get("id") if isinstance(intent, dict) else intent)
    if not intent_id and event_type.startswith("payment_intent."):
        intent_id = resource_id

    payments = attrs.get("payments") or []
    if not isinstance(payments, list):
        payments = []
    last_payment = payments[-1] if payments and isinstance(payments[-1], dict) else None
    payment_id = resource_id
    if event_type.startswith("payment_intent.") or event_type.startswith("checkout_session."):
        payment_id = last_payment.get("id") if last_payment else resource_id

    minor = attrs.get("amount")
    if minor is None and last_payment:
        minor = _as_dict(last_payment.get("attributes")).get("amount")
    if minor is None and isinstance(intent, dict):
        minor = _as_dict(intent.get("attributes")).get("amount")
    try:
        amount = from_minor(minor) if minor is not None else None
    except (TypeError, ValueError):
        raise WebhookPayloadError("Invalid payment amount")

    metadata = attrs.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}

    return PaymentEvent(
        event_id=event_id,
        event_type=event_type,
        resource_id=resource_id,
        payment_intent_id=intent_id,
        payment_id=payment_id,
        amount=amount,
        metadata=metadata,
    )


# =============================================================================
# APPLICATION
# =============================================================================

def _matching_orders(event: PaymentEvent) -> list[Order]:
    orders = []
    if event.payment_intent_id:
        orders = db.session.query(Order).filter(
            Order.payment_intent_id == event.payment_intent_id
        ).with_for_update().all()
    if not orders and event.metadata.get("order_id"):
        order = db.session.query(Order).filter(
            Order.id == str(event.metadata["order_id"])
        ).with_for_update().first()
        if order:
            orders = [order]
    return orders


def _matching_records(event: PaymentEvent) -> list[PaymentRecord]:
    if not event.payment_intent_id:
        return []
    return db.session.query(PaymentRecord).filter_by(payment_intent_id=event.payment_intent_id).all()


def _apply_paid(event: PaymentEvent, orders: list[Order], client_ip: str | None) -> list[Order]:
    updated = []
    for order in orders:
        if order.payment_status == PAYMENT_STATUS_PAID:
            continue
        if event.amount is None or not amounts_match(order.total, event.amount):
            logger.error(
                "Amount mismatch for order %s: expected %s, received %s (event %s)",
                order.id, order.total, event.amount, event.event_id,
            )
            log_security_event(
                event_type="AMOUNT_MISMATCH",
                success=False,
                resource=WEBHOOK_RESOURCE,
                action=order.id,
                reason=f"expected={order.total} received={event.amount} payment={event.payment_id}",
                ip_address=client_ip,
                commit=False,
            )
            continue
        if mark_order_paid(order, payment_id=event.payment_id):
            updated.append(order)

    if event.payment_intent_id:
        mark_records_succeeded(
            event.payment_intent_id,
            paymongo_payment_id=event.payment_id,
            amount=event.amount,
        )
    return updated


def _apply_unpaid(event: PaymentEvent, orders: list[Order], payment_status: str, record_status: str) -> list[Order]:
    now = utcnow()
    updated = []
    for order in orders:
        if order.payment_status == PAYMENT_STATUS_PAID:
            logger.info("Ignoring %s for paid order %s", event.event_type, order.id)
            continue
        if order.payment_status == payment_status:
            continue
        order.payment_status = payment_status
        order.updated_at = now
        updated.append(order)

    for record in _matching_records(event):
        if record.status == RECORD_PENDING:
            record.status = record_status
            record.updated_at = now
    return updated


def handle_event(payload, client_ip: str | None = None) -> WebhookOutcome:
    """
    Apply one webhook delivery.

    Raises WebhookPayloadError for malformed bodies; database errors
    propagate so the route answers 500 and PayMongo retries.
    """
    event = parse_event(payload)

    if db.session.query(WebhookEvent.id).filter_by(event_id=event.event_id).first():
        logger.info("Duplicate webhook event ignored: %s (%s)", event.event_id, event.event_type)
        return WebhookOutcome(event.event_id, event.event_type, "duplicate")

    ledger = WebhookEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        payment_intent_id=event.payment_intent_id,
        client_ip=client_ip,
        received_at=utcnow(),
    )
    db.session.add(ledger)

    updated: list[Order] = []
    if event.event_type in PAID_EVENTS + FAILED_EVENTS + EXPIRED_EVENTS:
        orders = _matching_orders(event)
        if not orders:
            outcome = "no_match"
            logger.warning(
                "No order matches webhook %s (%s, intent %s)",
                event.event_id, event.event_type, event.payment_intent_id,
            )
        elif event.event_type in PAID_EVENTS:
            updated = _apply_paid(event, orders, client_ip)
            outcome = "applied"
        elif event.event_type in FAILED_EVENTS:
            updated = _apply_unpaid(event, orders, PAYMENT_STATUS_FAILED, RECORD_FAILED)
            outcome = "applied"
        else:
            updated = _apply_unpaid(event, orders, PAYMENT_STATUS_EXPIRED, RECORD_EXPIRED)
            outcome = "applied"
    else:
        outcome = "ignored"
        logger.info("Unhandled webhook event type %s", event.event_type)

    ledger.processed = True
    ledger.outcome = outcome
    ledger.orders_updated = len(updated)
    ledger.processed_at = utcnow()

    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event committed first
        db.session.rollback()
        logger.info("Duplicate webhook event ignored: %s (%s)", event.event_id, event.event_type)
        return WebhookOutcome(event.event_id, event.event_type, "duplicate")

    for order in updated:
        order_service.publish_order(order)

    logger.info(
        "Webhook %s (%s) %s; orders updated: %s",
        event.event_id, event.event_type, outcome, [o.id for o in updated],
    )
    return WebhookOutcome(event.event_id, event.event_type, outcome, [o.id for o in updated])
