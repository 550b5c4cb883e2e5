# Overview: Cash payment confirmation and payment password settings API.

"""
Cash Payment Confirmation

Cashiers mark cash orders paid after entering the shared payment
confirmation password. Repeated wrong passwords lock the device out
(423) for a while; see payment_security_service.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import client_ip, rate_limited, require_role
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..services import payment_security_service
from ..services.order_service import OrderNotFoundError
from ..services.payment_security_service import PaymentPasswordLockedError, PaymentSecurityError
from ..services.payment_service import PaymentError


payments_bp = Blueprint("payments", __name__, url_prefix="/api")


@payments_bp.post("/payments/confirm-cash")
@rate_limited
def confirm_cash_payment_route():
    """
    Request body: {"orderId": "...", "password": "...", "deviceId": "..." (optional)}

    Returns:
        200: {"success": true, "order": {...}}
        400: Missing fields, not a cash order
        401: Wrong password (remaining attempts in the message)
        404: Unknown order
        423: Locked out after too many failures
    """
    data = request.get_json(silent=True) or {}
    order_id = data.get("orderId")
    password = data.get("password")
    if not order_id or not password:
        return jsonify({"error": "orderId and password required"}), 400
    if not isinstance(password, str):
        return jsonify({"error": "password must be a string"}), 400

    try:
        order = payment_security_service.confirm_cash_payment(
            str(order_id),
            password,
            device_id=data.get("deviceId"),
            ip_address=client_ip(),
            user_agent=request.headers.get("User-Agent"),
        )
        return jsonify({"success": True, "order": order.to_dict()})
    except PaymentPasswordLockedError as e:
        return jsonify({"error": str(e), "retryAfterSeconds": e.seconds_remaining}), 423
    except PaymentSecurityError as e:
        return jsonify({"error": str(e)}), 401
    except OrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PaymentError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to confirm cash payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/settings/payment-password")
@require_role(ROLE_ADMIN)
def set_payment_password_route():
    """Request body: {"userId": "...", "password": "..."} (admin only)."""
    data = request.get_json(silent=True) or {}
    try:
        payment_security_service.set_confirmation_password(
            data.get("password") or "", updated_by_user_id=g.current_user.id
        )
        return jsonify({"success": True})
    except PaymentSecurityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set payment password")
        return jsonify({"error": "Internal server error"}), 500
