# Overview: Order placement and query API.

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import order_service
from ..services.order_service import OrderError, OrderNotFoundError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def place_order_route():
    """
    Place an order.

    Request body (as produced by Cart.to_order_payload):
    {
        "items": [{"id", "name", "price", "qty", "addOns", "specialInstructions", "totalItemPrice"}],
        "subtotal": 250.0,
        "discountCode": "SAVE10",
        "discountAmount": 25.0,
        "discountName": "10% off",
        "total": 225.0,
        "paymentMethod": "cash" | "gcash",
        "tableNumber": "5",
        "userId": "...",
        "source": "customer" | "cashier"
    }

    GCash orders start as pending_payment until the payment is confirmed.

    Returns:
        201: Created order
        400: Invalid order
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Invalid JSON body"}), 400
        order = order_service.place_order(data)
        return jsonify({"order": order.to_dict()}), 201
    except OrderError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
def list_orders_route():
    """
    Query params:
    - status
    - tableNumber
    - userId

    Orders come back oldest first.
    """
    try:
        orders = order_service.list_orders(
            status=request.args.get("status") or None,
            table_number=request.args.get("tableNumber") or None,
            user_id=request.args.get("userId") or None,
        )
        return jsonify({"orders": [o.to_dict() for o in orders]})
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<order_id>")
def get_order_route(order_id: str):
    try:
        return jsonify({"order": order_service.get_order(order_id).to_dict()})
    except OrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
