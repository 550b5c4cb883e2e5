# Overview: Discount lookup, application, and admin management API.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_role
from ..extensions import db
from ..models.auth import ROLE_ADMIN
from ..money import as_json_number, to_decimal
from ..services import discount_service
from ..services.discount_service import DiscountError


discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.get("/active")
def list_active_discounts_route():
    discounts = discount_service.list_active_discounts()
    return jsonify({"discounts": [d.to_dict() for d in discounts]})


@discounts_bp.get("/<code>")
def get_discount_route(code: str):
    discount = discount_service.get_discount_by_code(code)
    if not discount:
        return jsonify({"error": "Invalid discount code"}), 404
    return jsonify({"discount": discount.to_dict()})


@discounts_bp.post("/apply")
def apply_discount_route():
    """
    Price a subtotal with a discount code.

    Request body: {"code": "SAVE10", "subtotal": 250}

    Returns {subtotal, discountAmount, discountCode, discountName, finalTotal}.
    """
    data = request.get_json(silent=True) or {}
    try:
        subtotal = to_decimal(data.get("subtotal"))
    except ValueError:
        return jsonify({"error": "subtotal must be a number"}), 400

    discount = discount_service.get_discount_by_code(data.get("code") or "")
    if not discount:
        return jsonify({"error": "Invalid discount code"}), 404

    result = discount_service.apply_discount(discount, subtotal)
    return jsonify({
        "subtotal": as_json_number(result["subtotal"]),
        "discountAmount": as_json_number(result["discountAmount"]),
        "discountCode": result["discountCode"],
        "discountName": result["discountName"],
        "finalTotal": as_json_number(result["finalTotal"]),
    })


@discounts_bp.post("")
@require_role(ROLE_ADMIN)
def create_discount_route():
    """
    Create a discount code (admin only, by userId).

    Request body:
    {
        "userId": "...",
        "code": "SAVE10",
        "name": "10% off",
        "type": "percentage" | "fixed",
        "value": 10,
        "minOrder": 100,        (optional)
        "maxDiscount": 50,      (optional)
        "validFrom": "...",     (optional, ISO-8601)
        "validUntil": "...",    (optional, ISO-8601)
        "active": true
    }
    """
    try:
        discount = discount_service.create_discount(request.get_json(silent=True) or {})
        return jsonify({"discount": discount.to_dict()}), 201
    except DiscountError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create discount")
        return jsonify({"error": "Internal server error"}), 500


@discounts_bp.patch("/<int:discount_id>")
@require_role(ROLE_ADMIN)
def update_discount_route(discount_id: int):
    try:
        discount = discount_service.update_discount(discount_id, request.get_json(silent=True) or {})
        if not discount:
            return jsonify({"error": "Discount not found"}), 404
        return jsonify({"discount": discount.to_dict()})
    except DiscountError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update discount")
        return jsonify({"error": "Internal server error"}), 500
