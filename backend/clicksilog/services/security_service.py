# Overview: Append-only security event logging.

import logging

from ..extensions import db
from ..models import SecurityEvent
from clicksilog.time_utils import utcnow


logger = logging.getLogger(__name__)


def log_security_event(
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Record a security event.

    Pass commit=False to write the row inside the caller's transaction
    (the webhook handler records amount mismatches alongside its updates).
    """
    event = SecurityEvent(
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    if commit:
        db.session.commit()

    log = logger.info if success else logger.warning
    log("Security event %s (%s) action=%s reason=%s", event_type, "ok" if success else "failed", action, reason)
    return event
