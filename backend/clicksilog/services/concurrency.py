# Overview: Transaction helpers shared by the order, payment, and webhook services.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking to an order/payment lookup.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the Order version column
    still catches lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work that commits, retrying on lock and version conflicts.

    A webhook and a kitchen status update touching the same order can race;
    the loser sees StaleDataError and re-reads on the next attempt.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency conflict (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
