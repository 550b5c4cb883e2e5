# Overview: Scheduled maintenance jobs (order retention, payment expiry).

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..models import Order, PaymentRecord
from clicksilog.time_utils import utcnow
from . import order_service
from .order_service import PAYMENT_STATUS_EXPIRED, PAYMENT_STATUS_PAID, STATUS_COMPLETED
from .payment_service import RECORD_EXPIRED, RECORD_PENDING


logger = logging.getLogger(__name__)


def cleanup_completed_orders(*, retention_days: int = 30, limit: int = 100) -> int:
    """
    Delete completed orders created more than retention_days ago.

    Runs daily; at most `limit` orders per run. Rows are deleted through
    the ORM so their items go with them.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    orders = db.session.query(Order).filter(
        Order.status == STATUS_COMPLETED,
        Order.created_at < cutoff,
    ).order_by(Order.created_at.asc()).limit(limit).all()

    for order in orders:
        db.session.delete(order)
    db.session.commit()

    logger.info("Cleaned up %s old orders", len(orders))
    return len(orders)


def expire_stale_payments(*, limit: int = 50) -> int:
    """
    Expire pending payment records past their expires_at.

    Runs every 5 minutes. The owning order's paymentStatus becomes
    expired unless it has been paid in the meantime.
    """
    now = utcnow()
    records = db.session.query(PaymentRecord).filter(
        PaymentRecord.status == RECORD_PENDING,
        PaymentRecord.expires_at.isnot(None),
        PaymentRecord.expires_at < now,
    ).order_by(PaymentRecord.expires_at.asc()).limit(limit).all()

    touched = {}
    for record in records:
        record.status = RECORD_EXPIRED
        record.updated_at = now

        order = record.order
        if order and order.payment_status != PAYMENT_STATUS_PAID:
            order.payment_status = PAYMENT_STATUS_EXPIRED
            order.updated_at = now
            touched[order.id] = order

    db.session.commit()
    for order in touched.values():
        order_service.publish_order(order)

    logger.info("Cancelled %s expired payments", len(records))
    return len(records)
