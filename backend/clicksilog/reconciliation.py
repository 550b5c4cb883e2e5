"""
Order Reconciliation

Client-side view of an order's status, fed by up to three sources: the
order_updated listener, a payment status poller, and an explicit check when
the app returns to the foreground. Each source may report the same change;
the reconciler keeps one authoritative status and emits each notification
at most once.

NOTIFICATIONS:
- (none) -> pending:  order placed
- * -> preparing, * -> ready
- * -> completed: only on an observed transition, within 10 minutes of the
  completion time, and once per order
- the first (priming) snapshot never notifies
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from .services import order_service
from .services.order_service import (
    PAYMENT_STATUS_EXPIRED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_PREPARING,
    STATUS_READY,
    can_transition,
)
from .time_utils import parse_iso_datetime, utcnow, within_last


logger = logging.getLogger(__name__)


COMPLETED_NOTIFICATION_WINDOW = timedelta(minutes=10)

PAYMENT_POLL_INTERVAL_SECONDS = 5.0
PAYMENT_POLL_TIMEOUT_SECONDS = 300.0

FINAL_PAYMENT_STATUSES = (PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED, PAYMENT_STATUS_EXPIRED)


@dataclass(frozen=True)
class Notification:
    order_id: str
    kind: str  # placed, preparing, ready, completed
    title: str
    message: str


def _notification(order_id: str, kind: str) -> Notification:
    if kind == "placed":
        return Notification(order_id, kind, "Order Placed!",
                            f"Your order #{order_id} has been placed successfully. We'll notify you when it's ready!")
    if kind == STATUS_PREPARING:
        return Notification(order_id, kind, "Order Update", f"Your order #{order_id} is now being prepared!")
    if kind == STATUS_READY:
        return Notification(order_id, kind, "Order Ready!", f"Your order #{order_id} is ready for pickup!")
    return Notification(order_id, kind, "Order Completed!", f"Thank you for your order #{order_id}! Enjoy your meal!")


def _completed_at(snapshot: dict):
    for key in ("completedTime", "updatedAt", "timestamp", "createdAt"):
        value = snapshot.get(key)
        if value:
            return parse_iso_datetime(value)
    return None


class OrderReconciler:
    """
    Authoritative status of one order.

    observe() is safe to call from any thread. A snapshot whose status is
    behind the known one (a stale poll answer) is ignored.
    """

    def __init__(
        self,
        order_id: str,
        on_notify: Optional[Callable[[Notification], None]] = None,
        now: Callable = utcnow,
    ):
        self.order_id = order_id
        self.on_notify = on_notify
        self._now = now
        self._lock = threading.Lock()
        self._primed = False
        self._completed_notified = False
        self.status: str | None = None
        self.snapshot: dict | None = None
        self.notifications: list[Notification] = []

    def observe(self, snapshot: dict | None, source: str = "listener") -> Notification | None:
        with self._lock:
            status = snapshot.get("status") if snapshot else None

            if not self._primed:
                self._primed = True
                self.status = status
                self.snapshot = snapshot
                return None

            previous = self.status
            if status == previous:
                if snapshot:
                    self.snapshot = snapshot
                return None

            if previous is not None and status is not None and not can_transition(previous, status):
                logger.debug("Ignoring stale %s snapshot for %s (%s after %s)", source, self.order_id, status, previous)
                return None

            self.status = status
            self.snapshot = snapshot
            note = self._notification_for(previous, status, snapshot)
            if note:
                self.notifications.append(note)

        logger.info("Order %s %s -> %s (via %s)", self.order_id, previous, status, source)
        if note and self.on_notify:
            self.on_notify(note)
        return note

    def _notification_for(self, previous, status, snapshot) -> Notification | None:
        if previous is None and status == STATUS_PENDING:
            return _notification(self.order_id, "placed")
        if status in (STATUS_PREPARING, STATUS_READY):
            return _notification(self.order_id, status)
        if status == STATUS_COMPLETED and previous is not None and not self._completed_notified:
            completed_at = _completed_at(snapshot or {})
            if completed_at and within_last(completed_at, COMPLETED_NOTIFICATION_WINDOW, now=self._now()):
                self._completed_notified = True
                return _notification(self.order_id, STATUS_COMPLETED)
        return None


class OrderNotificationTracker:
    """
    Reconciler per order for a customer's order list.

    observe() takes the full list each time; orders missing from it are
    forgotten, so a reappearing order starts fresh.
    """

    def __init__(self, on_notify: Optional[Callable[[Notification], None]] = None, now: Callable = utcnow):
        self.on_notify = on_notify
        self._now = now
        self._lock = threading.Lock()
        self._primed = False
        self._reconcilers: dict[str, OrderReconciler] = {}

    @property
    def order_ids(self) -> list[str]:
        return list(self._reconcilers)

    def observe(self, orders: list[dict], source: str = "listener") -> list[Notification]:
        with self._lock:
            priming = not self._primed
            self._primed = True
            seen = set()
            pending = []
            for order in orders:
                order_id = order["id"]
                seen.add(order_id)
                reconciler = self._reconcilers.get(order_id)
                if reconciler is None:
                    reconciler = OrderReconciler(order_id, self.on_notify, now=self._now)
                    # Orders first seen after priming are new: prime with "absent"
                    reconciler.observe(order if priming else None, source)
                    self._reconcilers[order_id] = reconciler
                    if priming:
                        continue
                pending.append((reconciler, order))

            for order_id in list(self._reconcilers):
                if order_id not in seen:
                    del self._reconcilers[order_id]

        notes = []
        for reconciler, order in pending:
            note = reconciler.observe(order, source)
            if note:
                notes.append(note)
        return notes


class PaymentWatcher:
    """
    Wait for an order's payment to settle.

    Three sources race: the order_updated listener, a poller calling
    check() every interval seconds for at most timeout seconds, and
    on_foreground(). The first to see a final payment status wins:
    "paid" runs on_paid(source, payload), "failed" or "expired" runs
    on_failed(source, status, payload). Either runs exactly once and stops
    the other sources.

    The poll timeout only ends polling; the listener and on_foreground()
    stay live until stop() or a final status.

    check() returns a check_payment_status-style dict ({"status": ...}).
    """

    def __init__(
        self,
        order_id: str,
        check: Callable[[], dict],
        on_paid: Optional[Callable[[str, dict], None]] = None,
        on_failed: Optional[Callable[[str, str, dict], None]] = None,
        interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
        timeout: float = PAYMENT_POLL_TIMEOUT_SECONDS,
        subscribe: Callable = order_service.subscribe_order,
    ):
        self.order_id = order_id
        self.check = check
        self.on_paid = on_paid
        self.on_failed = on_failed
        self.interval = interval
        self.timeout = timeout
        self._subscribe = subscribe
        self._unsubscribe: Callable[[], None] | None = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.final_status: str | None = None
        self.resolved_by: str | None = None
        self.timed_out = False

    @property
    def paid(self) -> bool:
        return self.final_status == PAYMENT_STATUS_PAID

    @property
    def paid_by(self) -> str | None:
        return self.resolved_by if self.paid else None

    def start(self) -> "PaymentWatcher":
        self._unsubscribe = self._subscribe(self.order_id, self._on_snapshot)
        self._thread = threading.Thread(target=self._poll, name=f"payment-watch-{self.order_id}", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe:
            unsubscribe()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    @property
    def polling(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def on_foreground(self) -> bool:
        """Check immediately (app resumed). Returns True if this call settled the payment."""
        if self.stopped:
            return False
        return self._check_once("foreground")

    def _on_snapshot(self, snapshot: dict | None) -> None:
        if snapshot:
            self._settle("listener", snapshot.get("paymentStatus"), snapshot)

    def _check_once(self, source: str) -> bool:
        try:
            result = self.check()
        except Exception as exc:
            logger.warning("Payment check for order %s failed (%s): %s", self.order_id, source, exc)
            return False
        if not result:
            return False
        return self._settle(source, result.get("paymentStatus") or result.get("status"), result)

    def _poll(self) -> None:
        deadline = time.monotonic() + self.timeout
        while not self._stop.wait(self.interval):
            if time.monotonic() >= deadline:
                # listener and foreground checks keep running
                logger.info("Stopped polling payment for order %s after %ss", self.order_id, self.timeout)
                self.timed_out = True
                return
            if self._check_once("poller"):
                return

    def _settle(self, source: str, status: str | None, payload: dict) -> bool:
        if status not in FINAL_PAYMENT_STATUSES:
            return False
        with self._lock:
            if self.final_status is not None:
                return False
            self.final_status = status
            self.resolved_by = source
        logger.info("Order %s payment %s (seen by %s)", self.order_id, status, source)
        self.stop()
        if status == PAYMENT_STATUS_PAID:
            if self.on_paid:
                self.on_paid(source, payload)
        elif self.on_failed:
            self.on_failed(source, status, payload)
        return True
