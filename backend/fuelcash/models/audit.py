from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Write-only audit trail of engine state transitions.

    The engine appends here and never reads back. Rows are not updated
    or deleted.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    station_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    category = db.Column(db.String(32), nullable=False, default="general", index=True)
    severity = db.Column(db.String(16), nullable=False, default="info")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "station_id": self.station_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "category": self.category,
            "severity": self.severity,
            "created_at": to_utc_z(self.created_at),
        }
