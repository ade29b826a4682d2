# Overview: Row locking and retry helpers shared by the mutating services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Lock the selected readings / settlements / handovers until commit.

    SQLite has no SELECT ... FOR UPDATE and silently drops it. There the
    guarantees come from the conditional reading UPDATE and the unique
    indexes on final settlements and previous_handover_id.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one unit of work, retrying it from scratch when the database
    reports a lock timeout or deadlock (OperationalError) or a version
    mismatch on a settlement/handover row (StaleDataError).

    func must do its own reads so a retry sees fresh state. Domain errors
    are not retried.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.warning(
                "Retrying %s after %s (attempt %d of %d)",
                getattr(func, "__name__", "operation"), type(exc).__name__, attempt, attempts,
            )
            time.sleep(backoff_base * (2 ** (attempt - 1)))
