"""
Payment function endpoint tests (mock provider).

Verifies:
- Cash short-circuits without a provider call
- GCash creates a QR PH payment and stores correlation ids
- Input validation and order checks (amount, paid, terminal)
- A provider failure leaves the order untouched
- checkPaymentStatus applies the paid transition once the intent succeeds
"""

import pytest

from clicksilog.extensions import db
from clicksilog.models import Order, PaymentRecord
from clicksilog.services import order_service


def _payment_body(order, **overrides):
    body = {
        "amount": float(order.total),
        "currency": "PHP",
        "description": f"Order #{order.id}",
        "orderId": order.id,
        "paymentMethod": "gcash",
        "tableNumber": "5",
    }
    body.update(overrides)
    return body


def _reload(order_id):
    db.session.expire_all()
    return db.session.get(Order, order_id)


# =============================================================================
# /processPayment
# =============================================================================


class TestProcessPayment:

    def test_cash_makes_no_provider_call(self, client, provider, make_order):
        order = make_order()
        resp = client.post("/processPayment", json=_payment_body(order, paymentMethod="cash"))
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "status": "pending", "paymentMethod": "cash"}
        assert provider.intents == {}

    def test_gcash_returns_qr(self, client, provider, gcash_order):
        resp = client.post("/processPayment", json=_payment_body(gcash_order))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["status"] == "pending"
        assert body["qrData"].startswith("data:image/png;base64,")
        assert body["sourceId"] == body["paymentIntentId"]
        assert body["expiresAt"].endswith("Z")
        assert body["currency"] == "PHP"

        order = _reload(gcash_order.id)
        assert order.payment_intent_id == body["paymentIntentId"]
        assert order.payment_method_id == body["methodId"]
        assert order.source_expires_at is not None

        record = db.session.query(PaymentRecord).filter_by(order_id=order.id).one()
        assert record.kind == "qrph"
        assert record.status == "pending"

    def test_provider_receives_peso_amount_and_metadata(self, client, provider, gcash_order):
        body = client.post("/processPayment", json=_payment_body(gcash_order)).get_json()
        intent = provider.intents[body["paymentIntentId"]]
        assert float(intent["amount"]) == 150.0
        assert intent["metadata"] == {"order_id": gcash_order.id, "table_number": "5"}

    @pytest.mark.parametrize("overrides,error", [
        ({"amount": "150"}, "Amount must be a number"),
        ({"amount": 0.5}, "Amount must be at least"),
        ({"amount": 60000}, "Amount must not exceed"),
        ({"orderId": ""}, "Order ID is required"),
        ({"currency": "JPY"}, "Currency must be one of"),
    ])
    def test_validation_errors(self, client, provider, gcash_order, overrides, error):
        body = client.post("/processPayment", json=_payment_body(gcash_order, **overrides)).get_json()
        assert body["success"] is False
        assert error in body["error"]
        assert provider.intents == {}

    def test_amount_must_match_order(self, client, provider, gcash_order):
        body = client.post("/processPayment", json=_payment_body(gcash_order, amount=149.0)).get_json()
        assert body == {"success": False, "error": "Amount does not match order total"}

    def test_unknown_order(self, client, provider, db_session):
        body = client.post("/processPayment", json={"amount": 10, "orderId": "ghost", "paymentMethod": "gcash"}).get_json()
        assert body == {"success": False, "error": "Order not found"}

    def test_unsupported_method(self, client, provider, gcash_order):
        body = client.post("/processPayment", json=_payment_body(gcash_order, paymentMethod="card")).get_json()
        assert body["success"] is False
        assert "Unsupported payment method" in body["error"]

    def test_provider_failure_leaves_order_untouched(self, client, provider, gcash_order):
        provider.fail_with = "Something went wrong"
        body = client.post("/processPayment", json=_payment_body(gcash_order)).get_json()
        assert body == {"success": False, "error": "Something went wrong"}

        order = _reload(gcash_order.id)
        assert order.payment_intent_id is None
        assert order.status == "pending_payment"
        assert db.session.query(PaymentRecord).count() == 0

    def test_retry_after_failure_uses_same_order(self, client, provider, gcash_order):
        provider.fail_with = "Something went wrong"
        client.post("/processPayment", json=_payment_body(gcash_order))
        provider.fail_with = None
        body = client.post("/processPayment", json=_payment_body(gcash_order)).get_json()
        assert body["success"] is True

    def test_paid_order_rejected(self, client, provider, gcash_order, db_session):
        gcash_order.payment_status = "paid"
        db_session.commit()
        body = client.post("/processPayment", json=_payment_body(gcash_order)).get_json()
        assert body == {"success": False, "error": "Order is already paid"}

    def test_cancelled_order_rejected(self, client, provider, gcash_order):
        order_service.update_status(gcash_order.id, "cancelled")
        body = client.post("/processPayment", json=_payment_body(gcash_order)).get_json()
        assert body == {"success": False, "error": "Order is cancelled"}

    def test_cash_order_switched_to_gcash_waits_for_payment(self, client, provider, make_order):
        order = make_order()
        client.post("/processPayment", json=_payment_body(order))
        assert _reload(order.id).status == "pending_payment"


# =============================================================================
# /createPaymentIntent, /createPaymentSource, /createCheckoutSession
# =============================================================================


class TestCreateEndpoints:

    def test_payment_intent(self, client, provider, gcash_order):
        resp = client.post("/createPaymentIntent", json=_payment_body(gcash_order))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["paymentIntentId"].startswith("pi_mock")
        assert body["clientKey"]
        assert _reload(gcash_order.id).payment_intent_id == body["paymentIntentId"]

    def test_payment_source(self, client, provider, gcash_order):
        body = client.post("/createPaymentSource", json=_payment_body(gcash_order)).get_json()
        assert set(body) == {"success", "paymentIntentId", "methodId", "qrData", "expiresAt"}

    def test_checkout_session(self, client, provider, gcash_order):
        body = client.post("/createCheckoutSession", json=_payment_body(gcash_order)).get_json()
        assert body["checkoutSessionId"].startswith("cs_mock")
        assert body["checkoutUrl"].endswith(body["checkoutSessionId"])
        order = _reload(gcash_order.id)
        assert order.checkout_session_id == body["checkoutSessionId"]
        assert order.payment_intent_id is not None

    def test_errors_map_to_status_codes(self, client, provider, gcash_order):
        assert client.post("/createPaymentSource", json={"amount": "x"}).status_code == 400
        missing = _payment_body(gcash_order, orderId="ghost")
        assert client.post("/createPaymentSource", json=missing).status_code == 404

        provider.fail_with = "Invalid request: amount"
        resp = client.post("/createPaymentSource", json=_payment_body(gcash_order))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid request: amount"

    def test_non_json_body(self, client, provider, db_session):
        resp = client.post("/createPaymentIntent", data="nope", content_type="text/plain")
        assert resp.status_code == 400


# =============================================================================
# /checkPaymentStatus
# =============================================================================


class TestCheckPaymentStatus:

    @pytest.fixture
    def pending_payment(self, client, provider, gcash_order):
        body = client.post("/processPayment", json=_payment_body(gcash_order)).get_json()
        return gcash_order, body["paymentIntentId"]

    def test_still_waiting(self, client, provider, pending_payment):
        order, intent_id = pending_payment
        body = client.post("/checkPaymentStatus", json={"orderId": order.id}).get_json()
        assert body["status"] == "awaiting_next_action"
        assert body["paymentIntentId"] == intent_id
        assert _reload(order.id).payment_status == "pending"

    def test_succeeded_marks_paid(self, client, provider, pending_payment):
        order, intent_id = pending_payment
        provider.intent_status = "succeeded"
        seen = []
        unsubscribe = order_service.subscribe_order(order.id, seen.append)
        try:
            body = client.post(
                "/checkPaymentStatus", json={"orderId": order.id, "paymentIntentId": intent_id}
            ).get_json()
        finally:
            unsubscribe()

        assert body["status"] == "paid"
        assert body["paymentId"] == f"pay_{intent_id}"
        assert body["amount"] == 150.0

        order = _reload(order.id)
        assert order.payment_status == "paid"
        assert order.status == "pending"
        assert [s["paymentStatus"] for s in seen] == ["paid"]

        record = db.session.query(PaymentRecord).filter_by(payment_intent_id=intent_id).one()
        assert record.status == "succeeded"

    def test_already_paid_skips_provider(self, client, provider, pending_payment):
        order, _ = pending_payment
        provider.intent_status = "succeeded"
        client.post("/checkPaymentStatus", json={"orderId": order.id})
        provider.fail_with = "should not be called"
        body = client.post("/checkPaymentStatus", json={"orderId": order.id}).get_json()
        assert body["status"] == "paid"

    def test_amount_mismatch(self, client, provider, pending_payment):
        order, intent_id = pending_payment
        provider.intent_status = "succeeded"
        provider.intents[intent_id]["amount"] = 1
        resp = client.post("/checkPaymentStatus", json={"orderId": order.id})
        assert resp.status_code == 400
        assert resp.get_json()["error"].startswith("Amount mismatch")
        assert _reload(order.id).payment_status == "pending"

    def test_missing_and_unknown(self, client, provider, gcash_order):
        assert client.post("/checkPaymentStatus", json={}).status_code == 400
        assert client.post("/checkPaymentStatus", json={"orderId": "ghost"}).status_code == 404
        resp = client.post("/checkPaymentStatus", json={"orderId": gcash_order.id})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Missing paymentIntentId"
