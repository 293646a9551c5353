# Overview: Read/update primitives for the per-location inventory ledger.

"""
Inventory Ledger Invariants (authoritative)

- One InventoryRecord per (location_id, item_id); created by upsert on the
  first stock movement, never deleted here.
- quantity is never negative. upsert_quantity rejects a negative target
  before touching the database; the DB CHECK constraint is the backstop.
- Absent records read as quantity 0.
- Every write goes through the ORM so the version_id optimistic lock is
  applied; no bulk UPDATE statements against inventory_records.
- Adjustments are append-only and never zero.
"""

from __future__ import annotations

from ..errors import ValidationError
from ..extensions import db
from ..models import InventoryRecord, StockAdjustment
from .concurrency import lock_for_update


class InventoryLedger:
    """Ledger repository injected into the stock count service."""

    def get_record(self, location_id: int, item_id: int) -> InventoryRecord | None:
        return db.session.query(InventoryRecord).filter_by(
            location_id=location_id,
            item_id=item_id,
        ).first()

    def get_quantity(self, location_id: int, item_id: int) -> int:
        """
        Current on-hand quantity, read from the database (not the identity map).

        populate_existing makes a repeated read inside one session observe
        rows committed by other connections since the first read.
        """
        record = (
            db.session.query(InventoryRecord)
            .filter_by(location_id=location_id, item_id=item_id)
            .populate_existing()
            .first()
        )
        return record.quantity if record is not None else 0

    def lock_records(self, location_id: int, item_ids) -> dict[int, InventoryRecord]:
        """
        Read and row-lock the records for several items at one location.

        Called inside the completion transaction; the returned objects are
        the ones subsequently written, so their version_id is the one the
        UPDATE compares against.
        """
        item_ids = sorted(set(item_ids))
        if not item_ids:
            return {}
        query = (
            db.session.query(InventoryRecord)
            .filter(
                InventoryRecord.location_id == location_id,
                InventoryRecord.item_id.in_(item_ids),
            )
            .order_by(InventoryRecord.item_id)
            .populate_existing()
        )
        return {record.item_id: record for record in lock_for_update(query).all()}

    def list_location_records(self, location_id: int) -> list[InventoryRecord]:
        return (
            db.session.query(InventoryRecord)
            .filter_by(location_id=location_id)
            .order_by(InventoryRecord.item_id)
            .all()
        )

    def upsert_quantity(
        self,
        location_id: int,
        item_id: int,
        quantity: int,
        preserve_reorder_settings: bool = True,
        *,
        existing: InventoryRecord | None = None,
    ) -> InventoryRecord:
        """
        Set the on-hand quantity (absolute, not increment).

        Existing records keep their reorder settings unless
        preserve_reorder_settings is False, in which case they are cleared.
        New records start without reorder settings.
        """
        if quantity < 0:
            raise ValidationError(
                f"Inventory quantity cannot be negative (item {item_id} at location {location_id})"
            )

        record = existing if existing is not None else self.get_record(location_id, item_id)
        if record is None:
            record = InventoryRecord(
                location_id=location_id,
                item_id=item_id,
                quantity=quantity,
            )
            db.session.add(record)
        else:
            record.quantity = quantity
            if not preserve_reorder_settings:
                record.reorder_point = None
                record.reorder_quantity = None
                record.max_stock = None

        db.session.flush()
        return record

    def create_adjustment(
        self,
        *,
        practice_id: int,
        location_id: int,
        item_id: int,
        quantity: int,
        reason: str,
        note: str | None,
        created_by_id: int | None,
    ) -> StockAdjustment:
        if quantity == 0:
            raise ValidationError("Adjustment quantity cannot be zero")

        adjustment = StockAdjustment(
            practice_id=practice_id,
            location_id=location_id,
            item_id=item_id,
            quantity=quantity,
            reason=reason,
            note=note,
            created_by_id=created_by_id,
        )
        db.session.add(adjustment)
        db.session.flush()
        return adjustment
