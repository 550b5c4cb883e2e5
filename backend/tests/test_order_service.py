"""
Order placement, status lifecycle, and change publication tests.
"""

from decimal import Decimal

import pytest

from clicksilog.services import order_service
from clicksilog.services.order_service import InvalidTransitionError, OrderError, OrderNotFoundError


class TestPlaceOrder:

    def test_cash_order_is_pending(self, make_order):
        order = make_order(total=150.0)
        assert order.status == "pending"
        assert order.payment_status is None
        assert len(order.id) == 20
        assert order.timestamp == order.created_at
        assert order.total == Decimal("150.00")

    def test_gcash_order_waits_for_payment(self, gcash_order):
        assert gcash_order.status == "pending_payment"
        assert gcash_order.payment_status == "pending"

    def test_items_are_flattened(self, db_session, order_payload):
        payload = order_payload(155.0)
        payload["items"][0]["addOns"] = [{"id": "egg", "name": "Extra egg", "price": 15}]
        payload["items"][0]["qty"] = 2
        order = order_service.place_order(payload)
        item = order.to_dict()["items"][0]
        assert item["quantity"] == 2
        assert item["addOns"] == [{"name": "Extra egg", "price": 15.0}]

    def test_rejects_empty_and_invalid(self, db_session, order_payload):
        with pytest.raises(OrderError):
            order_service.place_order({"items": []})
        with pytest.raises(OrderError):
            order_service.place_order(order_payload(payment_method="card"))

    def test_list_orders_oldest_first(self, make_order):
        first = make_order(tableNumber="1")
        second = make_order(tableNumber="1")
        make_order(tableNumber="2")
        ids = [o.id for o in order_service.list_orders(table_number="1")]
        assert ids == [first.id, second.id]


class TestStatusTransitions:

    def test_kitchen_flow_stamps_times(self, make_order):
        order = make_order()
        order = order_service.update_status(order.id, "preparing")
        assert order.preparation_start_time is not None
        order = order_service.update_status(order.id, "ready")
        assert order.ready_time is not None
        order = order_service.update_status(order.id, "completed")
        assert order.completed_time is not None

    def test_backward_move_rejected(self, make_order):
        order = make_order()
        order_service.update_status(order.id, "ready")
        with pytest.raises(InvalidTransitionError):
            order_service.update_status(order.id, "preparing")

    @pytest.mark.parametrize("terminal", ["completed", "cancelled", "failed", "expired"])
    def test_terminal_statuses_never_change(self, make_order, terminal):
        order = make_order()
        order_service.update_status(order.id, terminal)
        for target in ("pending", "preparing", "ready", "completed", "cancelled"):
            with pytest.raises(InvalidTransitionError):
                order_service.update_status(order.id, target)

    def test_unknown_status_and_order(self, make_order):
        order = make_order()
        with pytest.raises(InvalidTransitionError):
            order_service.update_status(order.id, "teleported")
        with pytest.raises(OrderNotFoundError):
            order_service.update_status("missing", "ready")

    def test_can_transition(self):
        assert order_service.can_transition("pending_payment", "pending")
        assert order_service.can_transition("pending", "cancelled")
        assert not order_service.can_transition("pending", "pending_payment")
        assert not order_service.can_transition("completed", "cancelled")


class TestPublication:

    def test_subscribers_get_snapshots_until_unsubscribed(self, make_order):
        order = make_order()
        seen = []
        unsubscribe = order_service.subscribe_order(order.id, seen.append)

        order_service.update_status(order.id, "preparing")
        unsubscribe()
        order_service.update_status(order.id, "ready")

        assert [s["status"] for s in seen] == ["preparing"]

    def test_other_orders_are_not_delivered(self, make_order):
        watched = make_order()
        other = make_order()
        seen = []
        unsubscribe = order_service.subscribe_order(watched.id, seen.append)
        try:
            order_service.update_status(other.id, "preparing")
        finally:
            unsubscribe()
        assert seen == []


class TestOrderRoutes:

    def test_place_and_fetch(self, client, db_session, order_payload):
        resp = client.post("/api/orders", json=order_payload(99.0, payment_method="gcash"))
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["status"] == "pending_payment"

        fetched = client.get(f"/api/orders/{order['id']}").get_json()["order"]
        assert fetched["total"] == 99.0

        listed = client.get("/api/orders?status=pending_payment").get_json()["orders"]
        assert [o["id"] for o in listed] == [order["id"]]

    def test_missing_order(self, client, db_session):
        assert client.get("/api/orders/nope").status_code == 404

    def test_invalid_order(self, client, db_session):
        resp = client.post("/api/orders", json={"items": []})
        assert resp.status_code == 400
