# Overview: Function-style HTTP endpoints called by the ordering clients and PayMongo.

"""
Payment and Order Functions

One POST endpoint per operation, matching the paths the mobile clients
already call:

- /processPayment          cash short-circuit or GCash QR PH
- /createPaymentIntent     bare PayMongo payment intent
- /createPaymentSource     QR PH payment (intent + method + attach)
- /createCheckoutSession   hosted checkout page
- /checkPaymentStatus      ask PayMongo, apply paid transition on success
- /handlePayMongoWebhook   provider events (signature verified)
- /updateOrderStatus       kitchen / cashier status moves (role checked)

All bodies are JSON; errors are {"error": message}.
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import authorize_user, client_ip, rate_limited
from ..extensions import db
from ..models.auth import STAFF_ROLES
from ..services import order_service, payment_service, webhook_service
from ..services.order_service import InvalidTransitionError, OrderNotFoundError
from ..services.payment_service import PaymentError
from ..services.paymongo import PaymentProviderError
from ..services.webhook_service import WebhookPayloadError, WebhookSignatureError
from ..validation import ValidationError


functions_bp = Blueprint("functions", __name__)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")
    return data


def _provider_error_response(e: PaymentProviderError):
    status = e.status_code if e.status_code and 400 <= e.status_code < 600 else 500
    return jsonify({"error": str(e), "details": e.errors}), status


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@functions_bp.post("/processPayment")
@rate_limited
def process_payment_route():
    """
    Request body:
    {
        "amount": 150.00,
        "currency": "PHP",
        "description": "Order #abc",
        "orderId": "abc",
        "paymentMethod": "gcash" | "cash",
        "tableNumber": "5"
    }

    Always 200 for well-formed JSON: failures are {"success": false, "error"}.
    """
    try:
        data = _json_body()
        return jsonify(payment_service.process_payment(data, client_ip=client_ip()))
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment processing failed")
        return jsonify({"success": False, "error": "Payment processing failed"}), 500


def _create(operation, failure_message: str):
    try:
        data = _json_body()
        return jsonify(operation(data, client_ip=client_ip()))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PaymentError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), e.status_code
    except PaymentProviderError as e:
        db.session.rollback()
        return _provider_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(failure_message)
        return jsonify({"error": failure_message}), 500


@functions_bp.post("/createPaymentIntent")
@rate_limited
def create_payment_intent_route():
    return _create(payment_service.create_payment_intent, "Payment intent creation failed")


@functions_bp.post("/createPaymentSource")
@rate_limited
def create_payment_source_route():
    return _create(payment_service.create_qr_payment, "QR PH payment creation failed")


@functions_bp.post("/createCheckoutSession")
@rate_limited
def create_checkout_session_route():
    return _create(payment_service.create_checkout_session, "Checkout session creation failed")


# =============================================================================
# PAYMENT STATUS
# =============================================================================

@functions_bp.post("/checkPaymentStatus")
@rate_limited
def check_payment_status_route():
    """
    Request body: {"orderId": "...", "paymentIntentId": "..." (optional)}

    Returns {success, orderId, paymentIntentId, status, ...}; status is
    "paid" once the order has been marked paid.
    """
    try:
        data = _json_body()
        if not data.get("orderId"):
            return jsonify({"error": "Missing orderId"}), 400
        result = payment_service.check_payment_status(
            str(data["orderId"]), data.get("paymentIntentId") or None
        )
        return jsonify(result)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PaymentError as e:
        return jsonify({"error": str(e)}), e.status_code
    except PaymentProviderError as e:
        return _provider_error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Payment status check failed")
        return jsonify({"error": "Payment status check failed"}), 500


# =============================================================================
# WEBHOOK
# =============================================================================

@functions_bp.post("/handlePayMongoWebhook")
def paymongo_webhook_route():
    """
    PayMongo event delivery.

    Returns:
        200: {"received": true} (also for unknown types and unmatched orders)
        200: {"received": true, "duplicate": true} for a repeated event id
        400: malformed payload
        401: missing or invalid signature
        500: processing failed (PayMongo retries)
    """
    ip = client_ip()
    raw_body = request.get_data(cache=True)
    secret = current_app.config.get("PAYMONGO_WEBHOOK_SECRET")

    if current_app.config.get("WEBHOOK_VERIFY_SIGNATURE") and secret:
        try:
            webhook_service.verify_signature(raw_body, request.headers.get("Paymongo-Signature"), secret)
        except WebhookSignatureError as e:
            current_app.logger.warning("Rejected webhook from %s: %s", ip, e)
            if str(e) != "Signature required":
                webhook_service.record_invalid_signature(str(e), ip, request.headers.get("User-Agent"))
            return jsonify({"error": str(e)}), 401

    try:
        outcome = webhook_service.handle_event(request.get_json(silent=True), client_ip=ip)
        return jsonify(outcome.to_dict()), 200
    except WebhookPayloadError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"error": "Webhook processing failed"}), 500


# =============================================================================
# ORDER STATUS
# =============================================================================

@functions_bp.post("/updateOrderStatus")
def update_order_status_route():
    """
    Request body: {"orderId": "...", "status": "preparing", "userId": "..."}

    userId must belong to an admin, cashier or kitchen user.
    """
    try:
        data = _json_body()
        order_id = data.get("orderId")
        status = data.get("status")
        if not order_id or not status:
            return jsonify({"error": "Missing orderId or status"}), 400

        denied = authorize_user(data.get("userId"), STAFF_ROLES)
        if denied:
            return denied

        order = order_service.update_status(str(order_id), status)
        return jsonify({"success": True, "orderId": order.id, "status": order.status})
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvalidTransitionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
