# Overview: Fire-and-forget audit sink for engine state transitions.

"""
Audit sink rules

- Called only after the primary operation has committed.
- Writes in its own short transaction.
- Never raises: failures are logged locally and swallowed so the primary
  operation is never rolled back or reported as failed because of audit.
"""

from __future__ import annotations

from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditLog


CATEGORY_FINANCE = "finance"
CATEGORY_CASH = "cash"

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"


def _persist(event: AuditLog) -> None:
    db.session.add(event)
    db.session.commit()


def log_audit_event(
    *,
    actor_user_id: int | None,
    station_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    category: str = CATEGORY_FINANCE,
    severity: str = SEVERITY_INFO,
) -> AuditLog | None:
    if not current_app.config.get("AUDIT_ENABLED", True):
        return None

    event = AuditLog(
        actor_user_id=actor_user_id,
        station_id=station_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        category=category,
        severity=severity,
    )
    try:
        _persist(event)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Audit event %s for %s %s could not be recorded", action, entity_type, entity_id
        )
        return None
    return event
