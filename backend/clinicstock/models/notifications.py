from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class InAppNotification(db.Model):
    """Per-user notification shown in the app (e.g., LOW_STOCK)."""
    __tablename__ = "in_app_notifications"
    __table_args__ = (
        db.Index("ix_notifications_practice_type_item", "practice_id", "type", "item_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "item_id": self.item_id,
            "location_id": self.location_id,
            "read": self.read,
            "created_at": to_utc_z(self.created_at),
        }
