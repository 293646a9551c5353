from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockCountStatus:
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({StockCountStatus.COMPLETED, StockCountStatus.CANCELLED})


class StockCountSession(db.Model):
    """
    One physical counting pass over one location.

    LIFECYCLE:
    1. IN_PROGRESS: lines being counted, added, re-counted or removed
    2. COMPLETED: variances reconciled (or recorded only); lines frozen
    3. CANCELLED: abandoned; the ledger is never touched

    COMPLETED and CANCELLED are terminal. completed_at is set if and only if
    status is COMPLETED.

    MULTI-TENANT: practice_id is denormalised from the location so every
    lookup can be scoped with a single filter.
    """
    __tablename__ = "stock_count_sessions"
    __table_args__ = (
        db.Index("ix_stock_count_sessions_practice_created", "practice_id", "created_at"),
        db.Index("ix_stock_count_sessions_practice_status", "practice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    # IN_PROGRESS, COMPLETED, CANCELLED
    status = db.Column(db.String(16), nullable=False, default=StockCountStatus.IN_PROGRESS, index=True)

    notes = db.Column(db.String(512), nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location", backref=db.backref("stock_count_sessions", lazy=True))
    created_by = db.relationship("User")
    lines = db.relationship(
        "StockCountLine",
        back_populates="session",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="StockCountLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_in_progress(self) -> bool:
        return self.status == StockCountStatus.IN_PROGRESS

    def __repr__(self) -> str:
        return f"<StockCountSession id={self.id} status={self.status} location_id={self.location_id}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "practice_id": self.practice_id,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "status": self.status,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "line_count": len(self.lines),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class StockCountLine(db.Model):
    """
    One item's counted-vs-system comparison within a session.

    system_quantity is a snapshot taken when the line was written; it is not
    live-linked to the ledger. variance is always counted - system.
    """
    __tablename__ = "stock_count_lines"
    __table_args__ = (
        db.UniqueConstraint("session_id", "item_id", name="uq_stock_count_lines_session_item"),
        db.CheckConstraint("counted_quantity >= 0", name="check_counted_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer,
        db.ForeignKey("stock_count_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    counted_quantity = db.Column(db.Integer, nullable=False)
    system_quantity = db.Column(db.Integer, nullable=False)
    variance = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(256), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    session = db.relationship("StockCountSession", back_populates="lines")
    item = db.relationship("Item")

    def recount(self, counted_quantity: int, system_quantity: int | None = None) -> int:
        """Set the counted value (and optionally a fresh snapshot); returns the new variance."""
        if system_quantity is not None:
            self.system_quantity = system_quantity
        self.counted_quantity = counted_quantity
        self.variance = counted_quantity - self.system_quantity
        return self.variance

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "item_sku": self.item.sku if self.item else None,
            "counted_quantity": self.counted_quantity,
            "system_quantity": self.system_quantity,
            "variance": self.variance,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
