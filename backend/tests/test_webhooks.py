"""
PayMongo webhook tests.

Verifies:
- Paid events mark every order with the intent paid (pending_payment -> pending)
- Event-id deduplication
- paid is absorbing: failed/expired never regress it, succeeded after failed wins
- Amount mismatches leave the order unpaid and are audited
- Signature verification (401 on missing/invalid)
- Malformed payloads 400, unknown types and unmatched orders 200
"""

import json
import time

import pytest

from clicksilog.extensions import db
from clicksilog.models import Order, PaymentRecord, SecurityEvent, WebhookEvent
from clicksilog.services import webhook_service


def _event(event_type, event_id="evt_1", intent_id="pi_1", amount=15000, **attrs):
    attributes = {"id": "pay_1", "amount": amount, "payment_intent_id": intent_id}
    attributes.update(attrs)
    return {"data": {"id": event_id, "type": event_type, "attributes": attributes}}


@pytest.fixture
def intent_order(gcash_order, db_session):
    gcash_order.payment_intent_id = "pi_1"
    db_session.add(PaymentRecord(
        order_id=gcash_order.id, payment_intent_id="pi_1", amount=150, currency="PHP", status="pending",
    ))
    db_session.commit()
    return gcash_order


def _post(client, body, headers=None):
    return client.post("/handlePayMongoWebhook", data=json.dumps(body),
                       content_type="application/json", headers=headers or {})


def _reload(order_id):
    db.session.expire_all()
    return db.session.get(Order, order_id)


# =============================================================================
# PAID
# =============================================================================


class TestPaidEvents:

    @pytest.mark.parametrize("event_type", webhook_service.PAID_EVENTS)
    def test_paid_event_marks_order_paid(self, client, intent_order, event_type):
        resp = _post(client, _event(event_type))
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        order = _reload(intent_order.id)
        assert order.payment_status == "paid"
        assert order.status == "pending"
        assert order.paid_at is not None

        record = db.session.query(PaymentRecord).filter_by(payment_intent_id="pi_1").one()
        assert record.status == "succeeded"

    def test_every_order_with_the_intent_is_paid(self, client, make_order, db_session):
        orders = [make_order(payment_method="gcash") for _ in range(2)]
        for order in orders:
            order.payment_intent_id = "pi_shared"
        db_session.commit()

        _post(client, _event("payment.paid", intent_id="pi_shared"))

        for order in orders:
            assert _reload(order.id).payment_status == "paid"

    def test_payment_id_recorded(self, client, intent_order):
        _post(client, _event("payment.paid"))
        assert _reload(intent_order.id).payment_id == "pay_1"

    def test_metadata_order_id_used_without_intent(self, client, gcash_order):
        body = _event("payment.paid", intent_id=None, metadata={"order_id": gcash_order.id})
        assert _post(client, body).status_code == 200
        assert _reload(gcash_order.id).payment_status == "paid"

    def test_no_matching_order_is_noop(self, client, db_session):
        resp = _post(client, _event("payment.paid", intent_id="pi_unknown"))
        assert resp.status_code == 200
        ledger = db.session.query(WebhookEvent).filter_by(event_id="evt_1").one()
        assert ledger.outcome == "no_match"

    def test_amount_mismatch_leaves_order_unpaid(self, client, intent_order):
        resp = _post(client, _event("payment.paid", amount=100))
        assert resp.status_code == 200

        order = _reload(intent_order.id)
        assert order.payment_status == "pending"
        assert order.status == "pending_payment"
        assert db.session.query(SecurityEvent).filter_by(event_type="AMOUNT_MISMATCH").count() == 1

    def test_within_one_centavo_is_accepted(self, client, intent_order):
        _post(client, _event("payment.paid", amount=15001))
        assert _reload(intent_order.id).payment_status == "paid"

    def test_paymongo_event_envelope(self, client, intent_order):
        body = {"data": {"id": "evt_env", "type": "event", "attributes": {
            "type": "payment.paid",
            "data": {"id": "pay_9", "type": "payment",
                     "attributes": {"amount": 15000, "payment_intent_id": "pi_1"}},
        }}}
        assert _post(client, body).status_code == 200
        order = _reload(intent_order.id)
        assert order.payment_status == "paid"
        assert order.payment_id == "pay_9"


# =============================================================================
# IDEMPOTENCY & ORDERING
# =============================================================================


class TestIdempotency:

    def test_duplicate_event_id(self, client, intent_order):
        assert _post(client, _event("payment.paid")).get_json() == {"received": True}
        resp = _post(client, _event("payment.paid"))
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "duplicate": True}
        assert db.session.query(WebhookEvent).count() == 1

    def test_failed_then_succeeded_ends_paid(self, client, intent_order):
        _post(client, _event("payment.failed", event_id="evt_a"))
        assert _reload(intent_order.id).payment_status == "failed"

        _post(client, _event("payment.paid", event_id="evt_b"))
        order = _reload(intent_order.id)
        assert order.payment_status == "paid"
        assert order.status == "pending"

    def test_succeeded_then_failed_stays_paid(self, client, intent_order):
        _post(client, _event("payment.paid", event_id="evt_a"))
        _post(client, _event("payment.failed", event_id="evt_b"))
        _post(client, _event("qrph.expired", event_id="evt_c"))

        order = _reload(intent_order.id)
        assert order.payment_status == "paid"
        record = db.session.query(PaymentRecord).filter_by(payment_intent_id="pi_1").one()
        assert record.status == "succeeded"


class TestUnpaidEvents:

    def test_failed_keeps_order_retryable(self, client, intent_order):
        _post(client, _event("payment_intent.failed", intent_id=None, id="pi_1"))
        order = _reload(intent_order.id)
        assert order.payment_status == "failed"
        assert order.status == "pending_payment"

    @pytest.mark.parametrize("event_type", webhook_service.EXPIRED_EVENTS)
    def test_expired_events(self, client, intent_order, event_type):
        _post(client, _event(event_type))
        assert _reload(intent_order.id).payment_status == "expired"
        record = db.session.query(PaymentRecord).filter_by(payment_intent_id="pi_1").one()
        assert record.status == "expired"

    def test_unknown_type_ignored(self, client, intent_order):
        resp = _post(client, _event("refund.updated"))
        assert resp.status_code == 200
        assert _reload(intent_order.id).payment_status == "pending"


# =============================================================================
# MALFORMED & SIGNATURES
# =============================================================================


class TestMalformed:

    @pytest.mark.parametrize("body", [
        {},
        {"data": {}},
        {"data": {"id": "evt"}},
        {"data": "x"},
        [],
        {"data": {"id": "evt", "type": 123}},
        {"data": {"id": "evt", "type": ["payment.paid"]}},
        {"data": {"id": "evt", "type": "event", "attributes": {"type": 7, "data": {"id": "pay_1"}}}},
        {"data": {"id": "evt", "type": "event", "attributes": {"type": "payment.paid", "data": {"id": "pay_1", "attributes": "x"}}}},
    ])
    def test_malformed_payload(self, client, db_session, body):
        assert _post(client, body).status_code == 400
        assert db.session.query(WebhookEvent).count() == 0

    def test_odd_nested_fields_are_tolerated(self, client, intent_order):
        body = _event("payment_intent.succeeded", intent_id=None, id="pi_1", payments={"not": "a list"})
        assert _post(client, body).status_code == 200
        assert _reload(intent_order.id).payment_status == "paid"


class TestSignature:

    SECRET = "whsk_test"

    @pytest.fixture(autouse=True)
    def _enable_signatures(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "WEBHOOK_VERIFY_SIGNATURE", True)
        monkeypatch.setitem(app.config, "PAYMONGO_WEBHOOK_SECRET", self.SECRET)

    def _signed_headers(self, raw, key="te"):
        ts = str(int(time.time()))
        signature = webhook_service.compute_signature(self.SECRET, ts, raw)
        return {"Paymongo-Signature": f"t={ts},{key}={signature}"}

    @pytest.mark.parametrize("key", ["te", "li"])
    def test_valid_signature(self, client, intent_order, key):
        raw = json.dumps(_event("payment.paid")).encode()
        resp = client.post("/handlePayMongoWebhook", data=raw, content_type="application/json",
                           headers=self._signed_headers(raw, key))
        assert resp.status_code == 200
        assert _reload(intent_order.id).payment_status == "paid"

    def test_missing_signature(self, client, intent_order):
        assert _post(client, _event("payment.paid")).status_code == 401
        assert _reload(intent_order.id).payment_status == "pending"

    def test_invalid_signature_is_audited(self, client, intent_order):
        raw = json.dumps(_event("payment.paid")).encode()
        headers = self._signed_headers(b"something else")
        resp = client.post("/handlePayMongoWebhook", data=raw, content_type="application/json", headers=headers)
        assert resp.status_code == 401
        assert db.session.query(SecurityEvent).filter_by(event_type="INVALID_WEBHOOK_SIGNATURE").count() == 1

    def test_verify_signature_unit(self):
        raw = b'{"a":1}'
        sig = webhook_service.compute_signature("s", "123", raw)
        webhook_service.verify_signature(raw, f"t=123,te=,li={sig}", "s")
        with pytest.raises(webhook_service.WebhookSignatureError):
            webhook_service.verify_signature(raw, f"t=124,li={sig}", "s")
        with pytest.raises(webhook_service.WebhookSignatureError):
            webhook_service.verify_signature(raw, None, "s")
