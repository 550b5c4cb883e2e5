# Overview: Payment creation (QR PH, intents, hosted checkout) and the shared paid transition.

"""
Payment Service

Creates provider-side payments for GCash orders and applies the paid
transition shared by the webhook, the status check, and cash confirmation.

FLOW (GCash):
1. Order placed with status pending_payment, paymentStatus pending
2. process_payment / create_qr_payment -> provider QR PH intent
3. Payment record stored; order gets the correlation ids
4. Webhook (or check_payment_status) -> mark_order_paid -> status pending

The order is only touched after the provider call succeeds, so a failed
attempt leaves it exactly as it was and the customer can retry with the
same order id.

AMOUNTS:
- Decimal pesos everywhere in this module
- The requested amount must match the order total within ₱0.01
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Order, PaymentRecord
from ..money import amounts_match, as_json_number, to_decimal
from clicksilog.time_utils import to_utc_z, utcnow
from ..validation import (
    MAX_TABLE_NUMBER_LENGTH,
    ValidationError,
    sanitize_string,
    validate_amount,
    validate_currency,
    validate_order_id,
)
from . import order_service
from .concurrency import lock_for_update, run_with_retry
from .order_service import (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_GCASH,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    STATUS_PENDING,
    STATUS_PENDING_PAYMENT,
    TERMINAL_STATUSES,
)
from .paymongo import PaymentProviderError, get_provider


logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """
    Raised when a payment cannot be created or applied.

    status_code is the HTTP status the routes should answer with.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


PAYMENT_KIND_INTENT = "intent"
PAYMENT_KIND_QRPH = "qrph"
PAYMENT_KIND_CHECKOUT = "checkout"

RECORD_PENDING = "pending"
RECORD_SUCCEEDED = "succeeded"
RECORD_FAILED = "failed"
RECORD_EXPIRED = "expired"


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

def _validated_request(data: dict) -> dict:
    """Shared input checks for every payment-creating call (raises ValidationError)."""
    amount = validate_amount(data.get("amount"))
    order_id = validate_order_id(data.get("orderId"))
    currency = validate_currency(data.get("currency"))
    description = sanitize_string(data.get("description")) or f"Order #{order_id}"
    table_number = sanitize_string(
        str(data["tableNumber"]) if data.get("tableNumber") is not None else "",
        MAX_TABLE_NUMBER_LENGTH,
    )
    return {
        "amount": amount,
        "order_id": order_id,
        "currency": currency,
        "description": description,
        "table_number": table_number,
    }


def _payable_order(order_id: str, amount: Decimal) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise PaymentError("Order not found", status_code=404)
    if not amounts_match(order.total, amount):
        raise PaymentError("Amount does not match order total")
    if order.payment_status == PAYMENT_STATUS_PAID:
        raise PaymentError("Order is already paid")
    if order.status in TERMINAL_STATUSES:
        raise PaymentError(f"Order is {order.status}")
    return order


def _metadata(req: dict) -> dict:
    return {"order_id": req["order_id"], "table_number": req["table_number"]}


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def create_qr_payment(data: dict, client_ip: str | None = None) -> dict:
    """
    Create a QR PH payment for an order (POST /createPaymentSource).

    Returns {success, paymentIntentId, methodId, qrData, expiresAt}.
    Raises ValidationError, PaymentError, or PaymentProviderError.
    """
    req = _validated_request(data)
    order = _payable_order(req["order_id"], req["amount"])
    provider = get_provider()

    result = provider.create_qr_payment(
        amount=req["amount"],
        currency=req["currency"],
        description=req["description"],
        metadata=_metadata(req),
        billing={
            "name": order.customer_name or "Customer",
            "email": order.customer_email,
            "phone": order.customer_phone,
        },
        ttl_minutes=current_app.config["QR_TTL_MINUTES"],
    )

    now = utcnow()
    db.session.add(PaymentRecord(
        order_id=order.id,
        payment_intent_id=result.payment_intent_id,
        payment_method_id=result.payment_method_id,
        kind=PAYMENT_KIND_QRPH,
        amount=req["amount"],
        currency=req["currency"],
        status=RECORD_PENDING,
        qr_code_image_url=result.qr_image_url,
        expires_at=result.expires_at,
        client_ip=client_ip,
        created_at=now,
    ))
    order_service.attach_payment_reference(
        order,
        payment_intent_id=result.payment_intent_id,
        source_id=result.payment_intent_id,
        payment_method_id=result.payment_method_id,
        payment_status=PAYMENT_STATUS_PENDING,
        source_expires_at=result.expires_at,
    )
    if order.status == STATUS_PENDING:
        # A cash order switched to GCash goes back behind the payment gate
        order.status = STATUS_PENDING_PAYMENT
    db.session.commit()

    logger.info("QR PH payment %s created for order %s", result.payment_intent_id, order.id)
    order_service.publish_order(order)

    return {
        "success": True,
        "paymentIntentId": result.payment_intent_id,
        "methodId": result.payment_method_id,
        "qrData": result.qr_image_url,
        "expiresAt": to_utc_z(result.expires_at),
    }


def create_payment_intent(data: dict, client_ip: str | None = None) -> dict:
    """
    Create a bare payment intent (POST /createPaymentIntent).

    Returns {success, paymentIntentId, clientKey, status}.
    """
    req = _validated_request(data)
    order = _payable_order(req["order_id"], req["amount"])
    methods = data.get("paymentMethodAllowed") or ["gcash", "qrph"]

    result = get_provider().create_payment_intent(
        amount=req["amount"],
        currency=req["currency"],
        description=req["description"],
        metadata=_metadata(req),
        methods=list(methods),
    )

    db.session.add(PaymentRecord(
        order_id=order.id,
        payment_intent_id=result.payment_intent_id,
        kind=PAYMENT_KIND_INTENT,
        amount=req["amount"],
        currency=req["currency"],
        status=RECORD_PENDING,
        client_ip=client_ip,
        created_at=utcnow(),
    ))
    order_service.attach_payment_reference(
        order,
        payment_intent_id=result.payment_intent_id,
        payment_status=PAYMENT_STATUS_PENDING,
    )
    db.session.commit()
    order_service.publish_order(order)

    return {
        "success": True,
        "paymentIntentId": result.payment_intent_id,
        "clientKey": result.client_key,
        "status": result.status,
    }


def create_checkout_session(data: dict, client_ip: str | None = None) -> dict:
    """
    Create a hosted checkout session (POST /createCheckoutSession).

    Returns {success, checkoutSessionId, checkoutUrl, expiresAt}.
    """
    req = _validated_request(data)
    order = _payable_order(req["order_id"], req["amount"])
    redirect_url = data.get("redirectUrl") or current_app.config["CHECKOUT_REDIRECT_URL"]

    result = get_provider().create_checkout_session(
        amount=req["amount"],
        currency=req["currency"],
        description=req["description"],
        metadata=_metadata(req),
        redirect_url=redirect_url,
    )

    expires_at = utcnow() + timedelta(minutes=current_app.config["QR_TTL_MINUTES"])

    db.session.add(PaymentRecord(
        order_id=order.id,
        payment_intent_id=result.payment_intent_id,
        checkout_session_id=result.checkout_session_id,
        kind=PAYMENT_KIND_CHECKOUT,
        amount=req["amount"],
        currency=req["currency"],
        status=RECORD_PENDING,
        checkout_url=result.checkout_url,
        expires_at=expires_at,
        client_ip=client_ip,
        created_at=utcnow(),
    ))
    fields = {
        "checkout_session_id": result.checkout_session_id,
        "payment_status": PAYMENT_STATUS_PENDING,
        "source_expires_at": expires_at,
    }
    if result.payment_intent_id:
        fields["payment_intent_id"] = result.payment_intent_id
    order_service.attach_payment_reference(order, **fields)
    db.session.commit()

    logger.info("Checkout session %s created for order %s", result.checkout_session_id, order.id)
    order_service.publish_order(order)

    return {
        "success": True,
        "checkoutSessionId": result.checkout_session_id,
        "checkoutUrl": result.checkout_url,
        "expiresAt": to_utc_z(expires_at),
    }


def process_payment(data: dict, client_ip: str | None = None) -> dict:
    """
    Client-facing payment entry point (POST /processPayment).

    Cash short-circuits to success without touching the provider. GCash
    creates a QR PH payment. Failures come back as {success: False, error}
    and leave the order untouched.
    """
    payment_method = data.get("paymentMethod") or PAYMENT_METHOD_GCASH

    if payment_method == PAYMENT_METHOD_CASH:
        return {"success": True, "status": "pending", "paymentMethod": PAYMENT_METHOD_CASH}

    if payment_method != PAYMENT_METHOD_GCASH:
        return {"success": False, "error": f"Unsupported payment method: {payment_method}"}

    try:
        result = create_qr_payment(data, client_ip=client_ip)
    except (ValidationError, PaymentError, PaymentProviderError) as e:
        db.session.rollback()
        logger.warning("Payment for order %s failed: %s", data.get("orderId"), e)
        return {"success": False, "error": str(e) or "Payment processing failed"}

    return {
        "success": True,
        "sourceId": result["paymentIntentId"],
        "paymentIntentId": result["paymentIntentId"],
        "methodId": result["methodId"],
        "qrData": result["qrData"],
        "expiresAt": result["expiresAt"],
        "status": "pending",
        "amount": data.get("amount"),
        "currency": (data.get("currency") or "PHP").upper(),
    }


# =============================================================================
# PAID TRANSITION
# =============================================================================

def mark_order_paid(order: Order, *, payment_id: str | None = None, paid_at=None) -> bool:
    """
    Apply the paid transition to an order inside the caller's transaction.

    paymentStatus -> paid, pending_payment -> pending, paymentId, paidAt.
    Returns False when nothing changed (already paid, or terminal order).
    The caller commits and publishes.
    """
    if order.payment_status == PAYMENT_STATUS_PAID:
        return False
    if order.status in TERMINAL_STATUSES:
        logger.warning("Payment received for %s order %s; leaving status alone", order.status, order.id)
        return False

    now = paid_at or utcnow()
    order.payment_status = PAYMENT_STATUS_PAID
    if order.status == STATUS_PENDING_PAYMENT:
        order.status = STATUS_PENDING
    if payment_id:
        order.payment_id = payment_id
    order.paid_at = now
    order.updated_at = now
    return True


def mark_records_succeeded(payment_intent_id: str, *, paymongo_payment_id: str | None, amount: Decimal | None) -> int:
    """Update matching payment records; the caller commits."""
    records = db.session.query(PaymentRecord).filter_by(payment_intent_id=payment_intent_id).all()
    now = utcnow()
    for record in records:
        record.status = RECORD_SUCCEEDED
        if paymongo_payment_id:
            record.paymongo_payment_id = paymongo_payment_id
        if amount is not None:
            record.amount = amount
        record.updated_at = now
    return len(records)


# =============================================================================
# STATUS CHECK
# =============================================================================

def check_payment_status(order_id: str, payment_intent_id: str | None = None) -> dict:
    """
    Ask the provider whether an order's payment went through.

    A succeeded intent applies the same paid transition as the webhook,
    after checking the amount. Raises PaymentError for unknown orders,
    missing intents, and amount mismatches.
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise PaymentError("Order not found", status_code=404)

    intent_id = payment_intent_id or order.payment_intent_id or order.source_id
    if not intent_id:
        raise PaymentError("Missing paymentIntentId")

    if order.payment_status == PAYMENT_STATUS_PAID:
        return {
            "success": True,
            "orderId": order.id,
            "paymentIntentId": intent_id,
            "paymentId": order.payment_id,
            "status": PAYMENT_STATUS_PAID,
            "amount": as_json_number(order.total),
        }

    intent = get_provider().retrieve_payment_intent(intent_id)

    if intent.status != "succeeded":
        return {
            "success": True,
            "orderId": order.id,
            "paymentIntentId": intent_id,
            "status": intent.status,
            "message": f"Payment status: {intent.status}",
        }

    if not amounts_match(order.total, intent.amount):
        logger.warning(
            "Amount mismatch on status check for order %s: expected %s, received %s",
            order.id, order.total, intent.amount,
        )
        raise PaymentError(
            f"Amount mismatch: expected {to_decimal(order.total)}, received {intent.amount}"
        )

    payment_id = intent.payment_id or intent.payment_intent_id

    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        changed = mark_order_paid(locked, payment_id=payment_id)
        mark_records_succeeded(intent_id, paymongo_payment_id=payment_id, amount=intent.amount)
        db.session.commit()
        return locked, changed

    order, changed = run_with_retry(_op)
    if changed:
        logger.info("Order %s marked paid by status check (intent %s)", order.id, intent_id)
        order_service.publish_order(order)

    return {
        "success": True,
        "orderId": order.id,
        "paymentIntentId": intent_id,
        "paymentId": order.payment_id,
        "status": PAYMENT_STATUS_PAID,
        "amount": as_json_number(intent.amount),
    }
