"""
Client-side order reconciliation tests.

Verifies:
- Listener, poller and foreground reports of the same change notify once
- Priming never notifies; stale snapshots are ignored
- Completed notifies only within 10 minutes and only once
- The tracker forgets orders that leave the list
- PaymentWatcher: first source to see a final payment status wins, the poll
  timeout only ends polling
"""

import threading
from datetime import timedelta

from clicksilog.reconciliation import OrderNotificationTracker, OrderReconciler, PaymentWatcher
from clicksilog.time_utils import to_utc_z, utcnow


def _snap(status, order_id="o1", **extra):
    snapshot = {"id": order_id, "status": status}
    snapshot.update(extra)
    return snapshot


class TestOrderReconciler:

    def test_each_status_notifies_once_across_sources(self):
        received = []
        rec = OrderReconciler("o1", on_notify=received.append)
        rec.observe(None)

        for status in ("pending", "preparing", "ready"):
            for source in ("listener", "poller", "foreground"):
                rec.observe(_snap(status), source)

        assert [n.kind for n in received] == ["placed", "preparing", "ready"]
        assert rec.status == "ready"
        assert received[2].title == "Order Ready!"

    def test_priming_snapshot_is_silent(self):
        rec = OrderReconciler("o1")
        assert rec.observe(_snap("preparing")) is None
        assert rec.notifications == []
        assert rec.observe(_snap("ready")).kind == "ready"

    def test_stale_snapshot_ignored(self):
        rec = OrderReconciler("o1")
        rec.observe(_snap("pending"))
        rec.observe(_snap("ready"))
        assert rec.observe(_snap("preparing"), "poller") is None
        assert rec.status == "ready"

    def test_completed_within_window(self):
        rec = OrderReconciler("o1")
        rec.observe(_snap("ready"))
        note = rec.observe(_snap("completed", completedTime=to_utc_z(utcnow() - timedelta(minutes=2))))
        assert note.kind == "completed"

    def test_old_completion_is_silent(self):
        rec = OrderReconciler("o1")
        rec.observe(_snap("ready"))
        note = rec.observe(_snap("completed", completedTime=to_utc_z(utcnow() - timedelta(minutes=30))))
        assert note is None
        assert rec.status == "completed"

    def test_completed_on_priming_is_silent(self):
        rec = OrderReconciler("o1")
        assert rec.observe(_snap("completed", completedTime=to_utc_z(utcnow()))) is None


class TestOrderNotificationTracker:

    def test_existing_orders_do_not_notify(self):
        tracker = OrderNotificationTracker()
        assert tracker.observe([_snap("pending", "a"), _snap("ready", "b")]) == []
        assert sorted(tracker.order_ids) == ["a", "b"]

    def test_new_order_after_priming_is_placed(self):
        tracker = OrderNotificationTracker()
        tracker.observe([])
        notes = tracker.observe([_snap("pending", "a")])
        assert [(n.order_id, n.kind) for n in notes] == [("a", "placed")]

    def test_updates_per_order(self):
        tracker = OrderNotificationTracker()
        tracker.observe([_snap("pending", "a"), _snap("pending", "b")])
        notes = tracker.observe([_snap("preparing", "a"), _snap("pending", "b")])
        assert [(n.order_id, n.kind) for n in notes] == [("a", "preparing")]

    def test_missing_orders_are_forgotten(self):
        tracker = OrderNotificationTracker()
        tracker.observe([_snap("pending", "a"), _snap("pending", "b")])
        tracker.observe([_snap("pending", "b")])
        assert tracker.order_ids == ["b"]


class _FakeFeed:
    """Stands in for order_service.subscribe_order."""

    def __init__(self):
        self.callbacks = []
        self.unsubscribed = 0

    def subscribe(self, order_id, callback):
        self.callbacks.append(callback)

        def unsubscribe():
            self.unsubscribed += 1
            self.callbacks.remove(callback)
        return unsubscribe

    def push(self, snapshot):
        for callback in list(self.callbacks):
            callback(snapshot)


class TestPaymentWatcher:

    def test_listener_wins(self):
        feed = _FakeFeed()
        paid = []
        watcher = PaymentWatcher("o1", check=lambda: {"status": "awaiting_next_action"},
                                 on_paid=lambda source, payload: paid.append(source),
                                 interval=0.01, timeout=5, subscribe=feed.subscribe).start()

        feed.push({"id": "o1", "paymentStatus": "pending"})
        feed.push({"id": "o1", "paymentStatus": "paid"})
        feed.push({"id": "o1", "paymentStatus": "paid"})

        assert paid == ["listener"]
        assert watcher.paid_by == "listener"
        assert watcher.stopped
        assert feed.unsubscribed == 1
        assert watcher.on_foreground() is False

    def test_poller_wins(self):
        feed = _FakeFeed()
        done = threading.Event()
        calls = []

        def check():
            calls.append(1)
            return {"status": "paid"} if len(calls) >= 2 else {"status": "awaiting_next_action"}

        watcher = PaymentWatcher("o1", check=check, on_paid=lambda source, payload: done.set(),
                                 interval=0.01, timeout=5, subscribe=feed.subscribe).start()
        assert done.wait(2)
        assert watcher.paid_by == "poller"
        watcher.stop()
        assert feed.callbacks == []

    def test_foreground_check(self):
        feed = _FakeFeed()
        watcher = PaymentWatcher("o1", check=lambda: {"status": "paid"},
                                 interval=60, timeout=300, subscribe=feed.subscribe).start()
        assert watcher.on_foreground() is True
        assert watcher.paid_by == "foreground"
        assert watcher.stopped

    def test_check_errors_are_survived(self):
        feed = _FakeFeed()

        def check():
            raise RuntimeError("offline")

        watcher = PaymentWatcher("o1", check=check, interval=60, timeout=300, subscribe=feed.subscribe).start()
        assert watcher.on_foreground() is False
        assert not watcher.paid
        watcher.stop()

    def test_timeout_only_ends_polling(self):
        feed = _FakeFeed()
        polls = []
        paid = []

        def check():
            polls.append(1)
            return {"status": "awaiting_next_action"}

        watcher = PaymentWatcher("o1", check=check, on_paid=lambda source, payload: paid.append(source),
                                 interval=0.01, timeout=0.05, subscribe=feed.subscribe).start()
        watcher._thread.join(2)
        assert watcher.timed_out
        assert not watcher.polling
        assert not watcher.stopped
        assert feed.unsubscribed == 0

        polls_at_timeout = len(polls)
        feed.push({"id": "o1", "paymentStatus": "paid"})
        assert paid == ["listener"]
        assert watcher.stopped
        assert feed.unsubscribed == 1
        assert len(polls) == polls_at_timeout

    def test_foreground_after_timeout(self):
        feed = _FakeFeed()
        results = [{"status": "awaiting_next_action"}]
        watcher = PaymentWatcher("o1", check=lambda: results[-1],
                                 interval=0.01, timeout=0.03, subscribe=feed.subscribe).start()
        watcher._thread.join(2)
        assert watcher.timed_out

        results.append({"status": "paid"})
        assert watcher.on_foreground() is True
        assert watcher.paid_by == "foreground"


class TestPaymentWatcherFailures:

    def test_expired_snapshot_stops_polling(self):
        feed = _FakeFeed()
        polls = []
        failed = []

        def check():
            polls.append(1)
            return {"status": "awaiting_next_action"}

        watcher = PaymentWatcher("o1", check=check,
                                 on_failed=lambda source, status, payload: failed.append((source, status)),
                                 interval=0.01, timeout=5, subscribe=feed.subscribe).start()
        feed.push({"id": "o1", "paymentStatus": "expired"})

        assert failed == [("listener", "expired")]
        assert watcher.final_status == "expired"
        assert watcher.stopped
        assert not watcher.polling
        assert not watcher.paid
        assert feed.unsubscribed == 1

        polls_after_expiry = len(polls)
        feed.push({"id": "o1", "paymentStatus": "paid"})
        assert watcher.on_foreground() is False
        assert len(polls) == polls_after_expiry
        assert watcher.final_status == "expired"

    def test_poller_sees_failure(self):
        feed = _FakeFeed()
        done = threading.Event()
        watcher = PaymentWatcher("o1", check=lambda: {"paymentStatus": "failed", "status": "awaiting_payment_method"},
                                 on_failed=lambda source, status, payload: done.set(),
                                 interval=0.01, timeout=5, subscribe=feed.subscribe).start()
        assert done.wait(2)
        assert watcher.final_status == "failed"
        assert watcher.resolved_by == "poller"
        watcher.stop()
        assert feed.callbacks == []

    def test_foreground_sees_expiry(self):
        feed = _FakeFeed()
        paid = []
        watcher = PaymentWatcher("o1", check=lambda: {"status": "expired"},
                                 on_paid=lambda source, payload: paid.append(source),
                                 interval=60, timeout=300, subscribe=feed.subscribe).start()
        assert watcher.on_foreground() is True
        assert watcher.final_status == "expired"
        assert watcher.stopped
        assert paid == []
