from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Item(db.Model):
    """
    Practice-scoped inventory item (a product the practice stocks).

    MULTI-TENANT: Items belong to one practice. Lookups are always filtered
    by practice_id through tenant_service.scoped_query.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_practice_name", "practice_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    practice = db.relationship("Practice", backref=db.backref("items", lazy=True))

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} practice_id={self.practice_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "name": self.name,
            "sku": self.sku,
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryRecord(db.Model):
    """
    On-hand quantity of one item at one location (the ledger).

    Single source of truth for "system quantity". Created on the first stock
    movement for a (location, item) pair and never deleted here.

    CONCURRENCY: version_id is an optimistic lock. Every ORM UPDATE is
    issued as "... WHERE id = :id AND version_id = :seen"; if another writer
    committed in between, zero rows match and SQLAlchemy raises
    StaleDataError, which run_with_retry turns into a full retry.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("location_id", "item_id", name="uq_inventory_records_location_item"),
        db.CheckConstraint("quantity >= 0", name="check_quantity_non_negative"),
        db.CheckConstraint("reorder_point IS NULL OR reorder_point >= 0", name="check_reorder_point_non_negative"),
        db.CheckConstraint("reorder_quantity IS NULL OR reorder_quantity > 0", name="check_reorder_quantity_positive"),
        db.CheckConstraint("max_stock IS NULL OR max_stock >= 0", name="check_max_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_point = db.Column(db.Integer, nullable=True)
    reorder_quantity = db.Column(db.Integer, nullable=True)
    max_stock = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    location = db.relationship("Location", backref=db.backref("inventory_records", lazy=True))
    item = db.relationship("Item", backref=db.backref("inventory_records", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord location_id={self.location_id} item_id={self.item_id} "
            f"quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "reorder_point": self.reorder_point,
            "reorder_quantity": self.reorder_quantity,
            "max_stock": self.max_stock,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAdjustment(db.Model):
    """
    Append-only record of a quantity change applied to the ledger.

    quantity is signed (positive = overage found, negative = shrink) and is
    never zero: a zero-variance count line produces no adjustment at all.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.CheckConstraint("quantity <> 0", name="check_quantity_not_zero"),
        db.Index("ix_stock_adjustments_practice_created", "practice_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    practice_id = db.Column(db.Integer, db.ForeignKey("practices.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(64), nullable=False)
    note = db.Column(db.String(512), nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "practice_id": self.practice_id,
            "location_id": self.location_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "note": self.note,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
