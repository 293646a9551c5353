# Overview: Pytest coverage for counting lines (add, re-count, update, remove).

"""
Stock Count Line Tests

Counting never writes to the ledger. Each line snapshots the system
quantity when written; variance is always counted - system.
"""

import pytest

from clinicstock.errors import BusinessRuleViolationError, ForbiddenError, NotFoundError, ValidationError
from clinicstock.extensions import db
from clinicstock.models import AuditLog, InventoryRecord, StockAdjustment, StockCountLine, StockCountSession

from conftest import get_quantity


@pytest.fixture
def open_session(service, staff_actor, location_a):
    return service.create_session(staff_actor, location_a.id)


class TestAddOrUpdateLine:

    def test_add_line_snapshots_system_quantity(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)

        result = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8, notes="Shelf 2")

        assert result.variance == -2
        line = db.session.get(StockCountLine, result.line_id)
        assert line.system_quantity == 10
        assert line.counted_quantity == 8
        assert line.variance == -2
        assert line.notes == "Shelf 2"

    def test_counting_does_not_touch_ledger(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)

        service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 3)

        assert get_quantity(location_a, item_gloves) == 10
        assert db.session.query(StockAdjustment).count() == 0

    def test_missing_record_counts_against_zero(self, service, staff_actor, open_session, location_a, item_gloves):
        result = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 4)

        assert result.variance == 4
        assert db.session.query(InventoryRecord).count() == 0

    def test_recount_updates_single_line(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)

        first = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8, notes="first pass")
        second = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 12)

        assert second.line_id == first.line_id
        assert second.variance == 2
        lines = db.session.query(StockCountLine).filter_by(session_id=open_session.id).all()
        assert len(lines) == 1
        assert lines[0].counted_quantity == 12
        # No new note given: the earlier one stays
        assert lines[0].notes == "first pass"

    def test_recount_refreshes_snapshot(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 10)

        stock(location_a, item_gloves, 14)
        result = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 10)

        assert result.variance == -4
        line = db.session.get(StockCountLine, result.line_id)
        assert line.system_quantity == 14

    def test_line_events_audited(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)

        result = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8)
        service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 9)

        actions = [
            entry.action
            for entry in db.session.query(AuditLog)
            .filter_by(entity_type="StockCountLine", entity_id=result.line_id)
            .order_by(AuditLog.id)
        ]
        assert actions == ["ADDED", "UPDATED"]

    @pytest.mark.parametrize("counted", [-1, "-5", 2.5, "1e3", "abc", None, True])
    def test_invalid_counted_quantity_rejected(self, service, staff_actor, open_session, item_gloves, counted):
        with pytest.raises(ValidationError):
            service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, counted)

        assert db.session.query(StockCountLine).count() == 0

    def test_negative_count_message(self, service, staff_actor, open_session, item_gloves):
        with pytest.raises(ValidationError, match="Counted quantity cannot be negative"):
            service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, -3)

    def test_digit_string_accepted(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 2)
        result = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, "5")
        assert result.variance == 3

    def test_viewer_cannot_count(self, service, viewer_actor, open_session, item_gloves):
        with pytest.raises(ForbiddenError):
            service.add_or_update_line(viewer_actor, open_session.id, item_gloves.id, 1)

    def test_unknown_item_not_found(self, service, staff_actor, open_session, item_gloves):
        with pytest.raises(NotFoundError):
            service.add_or_update_line(staff_actor, open_session.id, item_gloves.id + 1000, 1)

    def test_cannot_add_to_cancelled_session(self, service, staff_actor, open_session, item_gloves):
        service.cancel_session(staff_actor, open_session.id)

        with pytest.raises(BusinessRuleViolationError, match="Cannot edit completed session"):
            service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 1)


class TestUpdateLine:

    def test_update_uses_stored_snapshot(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8)

        # Ledger moves; an edit must not re-baseline the line
        stock(location_a, item_gloves, 20)
        updated = service.update_line(staff_actor, added.line_id, 11)

        assert updated.variance == 1
        line = db.session.get(StockCountLine, added.line_id)
        assert line.system_quantity == 10
        assert line.counted_quantity == 11

    def test_update_keeps_notes_unless_given(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8, notes="back room")

        service.update_line(staff_actor, added.line_id, 9)
        assert db.session.get(StockCountLine, added.line_id).notes == "back room"

        service.update_line(staff_actor, added.line_id, 9, notes="front room")
        assert db.session.get(StockCountLine, added.line_id).notes == "front room"

    def test_update_rejects_negative(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8)

        with pytest.raises(ValidationError):
            service.update_line(staff_actor, added.line_id, -1)

        assert db.session.get(StockCountLine, added.line_id).counted_quantity == 8

    def test_update_in_completed_session_rejected(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 10)
        service.complete_session(staff_actor, open_session.id, apply_adjustments=False)

        with pytest.raises(BusinessRuleViolationError, match="Cannot edit completed session"):
            service.update_line(staff_actor, added.line_id, 1)

    def test_unknown_line_not_found(self, service, staff_actor, open_session):
        with pytest.raises(NotFoundError):
            service.update_line(staff_actor, 999999, 1)


class TestRemoveLine:

    def test_remove_line(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8)

        service.remove_line(staff_actor, added.line_id)

        assert db.session.get(StockCountLine, added.line_id) is None
        removed = db.session.query(AuditLog).filter_by(entity_type="StockCountLine", action="REMOVED").one()
        assert removed.entity_id == added.line_id
        assert removed.metadata_data == {"session_id": open_session.id}

    def test_remove_from_completed_session_rejected(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 10)
        service.complete_session(staff_actor, open_session.id, apply_adjustments=False)

        with pytest.raises(BusinessRuleViolationError):
            service.remove_line(staff_actor, added.line_id)

        assert db.session.get(StockCountLine, added.line_id) is not None


class TestSessionVersioning:

    def test_every_line_write_bumps_session_version(self, service, staff_actor, open_session, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        versions = [_session_version(open_session.id)]

        added = service.add_or_update_line(staff_actor, open_session.id, item_gloves.id, 8)
        versions.append(_session_version(open_session.id))
        service.update_line(staff_actor, added.line_id, 7)
        versions.append(_session_version(open_session.id))
        service.remove_line(staff_actor, added.line_id)
        versions.append(_session_version(open_session.id))

        assert versions == sorted(set(versions))
        assert len(versions) == 4


def _session_version(session_id) -> int:
    return db.session.get(StockCountSession, session_id, populate_existing=True).version_id
