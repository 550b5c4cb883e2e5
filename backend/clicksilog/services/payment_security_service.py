"""
Payment Confirmation Password Service

Cashiers confirm cash payments with a shared password whose bcrypt hash
lives in settings under payment.confirmation_password_hash.

THROTTLING:
- PAYMENT_PASSWORD_MAX_ATTEMPTS failures -> lockout for
  PAYMENT_PASSWORD_LOCKOUT_MINUTES
- The failure streak is forgotten after PAYMENT_PASSWORD_ATTEMPT_RESET_MINUTES
  without a failure, after a successful check, and after a lockout
- Attempts are tracked per device (deviceId, falling back to the client IP)
  in the security_events table

The password itself is never logged or stored anywhere but as a hash.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import Order, SecurityEvent, Setting
from clicksilog.time_utils import utcnow
from . import order_service
from .concurrency import lock_for_update, run_with_retry
from .order_service import PAYMENT_METHOD_CASH, OrderNotFoundError
from .payment_service import PaymentError, mark_order_paid
from .security_service import log_security_event


logger = logging.getLogger(__name__)


PASSWORD_SETTING_KEY = "payment.confirmation_password_hash"
MIN_PASSWORD_LENGTH = 4

EVENT_FAILED = "PAYMENT_PASSWORD_FAILED"
EVENT_VERIFIED = "PAYMENT_PASSWORD_VERIFIED"
EVENT_LOCKOUT = "PAYMENT_PASSWORD_LOCKOUT"

RESOURCE = "/api/payments/confirm-cash"


class PaymentSecurityError(Exception):
    """Password not configured, or rejected."""
    pass


class PaymentPasswordLockedError(PaymentSecurityError):
    def __init__(self, seconds_remaining: int):
        minutes = max(1, -(-seconds_remaining // 60))
        super().__init__(f"Too many failed attempts. Please try again in {minutes} minute(s).")
        self.seconds_remaining = seconds_remaining


def _max_attempts() -> int:
    return current_app.config["PAYMENT_PASSWORD_MAX_ATTEMPTS"]


def _lockout_duration() -> timedelta:
    return timedelta(minutes=current_app.config["PAYMENT_PASSWORD_LOCKOUT_MINUTES"])


def _reset_window() -> timedelta:
    return timedelta(minutes=current_app.config["PAYMENT_PASSWORD_ATTEMPT_RESET_MINUTES"])


# =============================================================================
# PASSWORD STORAGE
# =============================================================================

def set_confirmation_password(password: str, updated_by_user_id: str | None = None) -> Setting:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PaymentSecurityError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
    setting = db.session.query(Setting).filter_by(key=PASSWORD_SETTING_KEY).first()
    if not setting:
        setting = Setting(key=PASSWORD_SETTING_KEY)
        db.session.add(setting)
    setting.value = password_hash
    setting.updated_by_user_id = updated_by_user_id
    setting.updated_at = utcnow()
    db.session.commit()

    logger.info("Payment confirmation password updated by %s", updated_by_user_id or "system")
    return setting


def _stored_hash() -> str | None:
    setting = db.session.query(Setting).filter_by(key=PASSWORD_SETTING_KEY).first()
    return setting.value if setting and setting.value else None


# =============================================================================
# THROTTLING
# =============================================================================

def _latest(event_type: str, key: str) -> SecurityEvent | None:
    return db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == event_type,
        SecurityEvent.action == key,
    ).order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).first()


def get_failure_streak(key: str, now=None) -> int:
    """
    Count consecutive recent failures for a device.

    The streak starts after the last success or lockout and breaks at any
    gap longer than the reset window (including the gap up to now).
    """
    now = now or utcnow()
    query = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == EVENT_FAILED,
        SecurityEvent.action == key,
    )
    for boundary_type in (EVENT_VERIFIED, EVENT_LOCKOUT):
        boundary = _latest(boundary_type, key)
        if boundary:
            query = query.filter(SecurityEvent.id > boundary.id)

    streak = 0
    cursor = now
    for event in query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()):
        if cursor - event.occurred_at > _reset_window():
            break
        streak += 1
        cursor = event.occurred_at
    return streak


def lockout_status(key: str, now=None) -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) while locked out
    - (False, None) otherwise
    """
    now = now or utcnow()
    lockout = _latest(EVENT_LOCKOUT, key)
    if lockout:
        lockout_end = lockout.occurred_at + _lockout_duration()
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())
    return False, None


def verify_confirmation_password(
    password: str,
    device_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> int:
    """
    Check the password, recording the attempt.

    Returns the remaining attempts after a failure would be counted (so the
    full allowance on success). Raises PaymentPasswordLockedError while
    locked out and PaymentSecurityError for a wrong or unset password.
    """
    key = device_id or ip_address or "unknown"

    locked, seconds_remaining = lockout_status(key)
    if locked:
        raise PaymentPasswordLockedError(seconds_remaining)

    stored = _stored_hash()
    if not stored:
        raise PaymentSecurityError("Payment confirmation password is not set")

    if isinstance(password, str) and password and bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8")):
        log_security_event(
            event_type=EVENT_VERIFIED,
            success=True,
            resource=RESOURCE,
            action=key,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return _max_attempts()

    streak = get_failure_streak(key) + 1
    remaining = max(0, _max_attempts() - streak)
    log_security_event(
        event_type=EVENT_FAILED,
        success=False,
        resource=RESOURCE,
        action=key,
        reason=f"Invalid payment password (attempt {streak}, {remaining} remaining)",
        ip_address=ip_address,
        user_agent=user_agent,
    )

    if remaining == 0:
        log_security_event(
            event_type=EVENT_LOCKOUT,
            success=False,
            resource=RESOURCE,
            action=key,
            reason=f"Locked for {current_app.config['PAYMENT_PASSWORD_LOCKOUT_MINUTES']} minutes",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise PaymentPasswordLockedError(int(_lockout_duration().total_seconds()))

    raise PaymentSecurityError(f"Invalid password. {remaining} attempt(s) remaining.")


# =============================================================================
# CASH CONFIRMATION
# =============================================================================

def confirm_cash_payment(
    order_id: str,
    password: str,
    device_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> Order:
    """Verify the password, then mark a cash order paid."""
    verify_confirmation_password(password, device_id=device_id, ip_address=ip_address, user_agent=user_agent)

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        if order.payment_method != PAYMENT_METHOD_CASH:
            raise PaymentError("Only cash orders can be confirmed with the payment password")
        changed = mark_order_paid(order)
        db.session.commit()
        return order, changed

    order, changed = run_with_retry(_op)
    if changed:
        logger.info("Cash payment confirmed for order %s", order.id)
        order_service.publish_order(order)
    return order
