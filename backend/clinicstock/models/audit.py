from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only log of domain events (who changed what, and how).

    IMMUTABLE: Never update or delete. Rows are written inside the same DB
    transaction as the change they describe, so a rolled-back completion
    leaves no audit trace either.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_practice_created", "practice_id", "created_at"),
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # e.g., StockCountSession, StockCountLine
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    # e.g., CREATED, ADDED, UPDATED, REMOVED, COMPLETED, CANCELLED, DELETED
    action = db.Column(db.String(32), nullable=False, index=True)

    # JSON text; keep small
    changes = db.Column(db.Text, nullable=True)
    # "metadata" is reserved on declarative models
    event_metadata = db.Column("metadata", db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def changes_data(self) -> dict:
        return json.loads(self.changes) if self.changes else {}

    @property
    def metadata_data(self) -> dict:
        return json.loads(self.event_metadata) if self.event_metadata else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "actor_id": self.actor_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "changes": self.changes_data,
            "metadata": self.metadata_data,
            "created_at": to_utc_z(self.created_at),
        }


class SecurityEvent(db.Model):
    """
    Security event audit log with tenant context.

    Records permission denials and cross-tenant access attempts.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_practice_occurred", "practice_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for events without an established tenant
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # PERMISSION_DENIED, CROSS_TENANT_ACCESS_DENIED, ...
    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(128), nullable=True)
    action = db.Column(db.String(64), nullable=True)

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
