# Overview: Pytest coverage for stock count session lifecycle (create, cancel, delete, reads).

"""
Stock Count Session Tests

Covers:
- Creation: role gate, location scoping, notes handling, audit row
- Cancel: IN_PROGRESS only, ledger untouched
- Delete: ADMIN only, completed sessions are permanent
- Reads: get/list (pagination, status filter), expected items
"""

import pytest

from clinicstock.errors import (
    BusinessRuleViolationError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from clinicstock.extensions import db
from clinicstock.models import AuditLog, SecurityEvent, StockCountLine, StockCountSession, StockCountStatus
from clinicstock.permissions import PracticeRole, RequestContext

from conftest import get_quantity


class TestCreateSession:

    def test_staff_creates_in_progress_session(self, service, staff_actor, location_a):
        count_session = service.create_session(staff_actor, location_a.id, notes="  Monthly count  ")

        assert count_session.status == StockCountStatus.IN_PROGRESS
        assert count_session.location_id == location_a.id
        assert count_session.practice_id == staff_actor.practice_id
        assert count_session.created_by_id == staff_actor.user_id
        assert count_session.notes == "Monthly count"
        assert count_session.completed_at is None

    def test_blank_notes_stored_as_none(self, service, staff_actor, location_a):
        count_session = service.create_session(staff_actor, location_a.id, notes="   ")
        assert count_session.notes is None

    def test_notes_length_limited(self, service, staff_actor, location_a):
        with pytest.raises(ValidationError):
            service.create_session(staff_actor, location_a.id, notes="x" * 513)

    def test_viewer_cannot_create(self, service, viewer_actor, location_a):
        with pytest.raises(ForbiddenError):
            service.create_session(viewer_actor, location_a.id)

        denial = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert denial.user_id == viewer_actor.user_id
        assert denial.practice_id == viewer_actor.practice_id

    def test_system_actor_without_user_rejected(self, service, practice_a, location_a):
        system_actor = RequestContext(practice_id=practice_a.id, user_id=None, role=PracticeRole.ADMIN)
        with pytest.raises(UnauthorizedError):
            service.create_session(system_actor, location_a.id)

    def test_missing_actor_rejected(self, service, location_a):
        with pytest.raises(UnauthorizedError):
            service.create_session(None, location_a.id)

    def test_unknown_location_not_found(self, service, staff_actor, location_a):
        with pytest.raises(NotFoundError):
            service.create_session(staff_actor, location_a.id + 1000)

    @pytest.mark.parametrize("location_id", [None, "abc", 1.5, True, -1, 0])
    def test_invalid_location_id_rejected(self, service, staff_actor, location_id):
        with pytest.raises(ValidationError):
            service.create_session(staff_actor, location_id)

    def test_creation_is_audited(self, service, staff_actor, location_a):
        count_session = service.create_session(staff_actor, location_a.id)

        entry = db.session.query(AuditLog).filter_by(
            entity_type="StockCountSession",
            entity_id=count_session.id,
        ).one()
        assert entry.action == "CREATED"
        assert entry.actor_id == staff_actor.user_id
        assert entry.changes_data["location_name"] == "Main Pharmacy"


class TestCancelSession:

    def test_cancel_in_progress(self, service, staff_actor, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        count_session = service.create_session(staff_actor, location_a.id)
        service.add_or_update_line(staff_actor, count_session.id, item_gloves.id, 7)

        cancelled = service.cancel_session(staff_actor, count_session.id)

        assert cancelled.status == StockCountStatus.CANCELLED
        assert cancelled.completed_at is None
        assert get_quantity(location_a, item_gloves) == 10

        actions = [entry.action for entry in db.session.query(AuditLog).filter_by(entity_type="StockCountSession")]
        assert "CANCELLED" in actions

    def test_cannot_cancel_twice(self, service, staff_actor, location_a):
        count_session = service.create_session(staff_actor, location_a.id)
        service.cancel_session(staff_actor, count_session.id)

        with pytest.raises(BusinessRuleViolationError, match="Can only cancel in-progress sessions"):
            service.cancel_session(staff_actor, count_session.id)

    def test_cannot_cancel_completed(self, service, staff_actor, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 5)
        count_session = service.create_session(staff_actor, location_a.id)
        service.add_or_update_line(staff_actor, count_session.id, item_gloves.id, 5)
        service.complete_session(staff_actor, count_session.id, apply_adjustments=False)

        with pytest.raises(BusinessRuleViolationError):
            service.cancel_session(staff_actor, count_session.id)

        assert db.session.get(StockCountSession, count_session.id).status == StockCountStatus.COMPLETED

    def test_viewer_cannot_cancel(self, service, staff_actor, viewer_actor, location_a):
        count_session = service.create_session(staff_actor, location_a.id)
        with pytest.raises(ForbiddenError):
            service.cancel_session(viewer_actor, count_session.id)


class TestDeleteSession:

    def test_admin_deletes_session_and_lines(self, service, admin_actor, staff_actor, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 3)
        count_session = service.create_session(staff_actor, location_a.id)
        service.add_or_update_line(staff_actor, count_session.id, item_gloves.id, 2)
        session_id = count_session.id

        service.delete_session(admin_actor, session_id)

        assert db.session.get(StockCountSession, session_id) is None
        assert db.session.query(StockCountLine).filter_by(session_id=session_id).count() == 0
        assert get_quantity(location_a, item_gloves) == 3

        entry = db.session.query(AuditLog).filter_by(entity_id=session_id, action="DELETED").one()
        assert entry.actor_id == admin_actor.user_id

    def test_admin_deletes_cancelled_session(self, service, admin_actor, location_a):
        count_session = service.create_session(admin_actor, location_a.id)
        service.cancel_session(admin_actor, count_session.id)
        session_id = count_session.id

        service.delete_session(admin_actor, session_id)

        assert db.session.get(StockCountSession, session_id) is None

    def test_staff_cannot_delete(self, service, staff_actor, location_a):
        count_session = service.create_session(staff_actor, location_a.id)
        with pytest.raises(ForbiddenError):
            service.delete_session(staff_actor, count_session.id)

    def test_completed_session_cannot_be_deleted(self, service, admin_actor, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 4)
        count_session = service.create_session(admin_actor, location_a.id)
        service.add_or_update_line(admin_actor, count_session.id, item_gloves.id, 4)
        service.complete_session(admin_actor, count_session.id, apply_adjustments=True)

        with pytest.raises(BusinessRuleViolationError, match="Cannot delete completed session"):
            service.delete_session(admin_actor, count_session.id)


class TestSessionReads:

    def test_get_session_includes_lines(self, service, staff_actor, viewer_actor, location_a, item_gloves, stock):
        stock(location_a, item_gloves, 10)
        count_session = service.create_session(staff_actor, location_a.id)
        service.add_or_update_line(staff_actor, count_session.id, item_gloves.id, 8)

        data = service.get_session(viewer_actor, count_session.id)

        assert data["status"] == StockCountStatus.IN_PROGRESS
        assert data["line_count"] == 1
        assert data["lines"][0]["item_name"] == "Nitrile Gloves (M)"
        assert data["lines"][0]["variance"] == -2

    def test_list_sessions_newest_first_with_status_filter(self, service, staff_actor, location_a):
        first = service.create_session(staff_actor, location_a.id)
        second = service.create_session(staff_actor, location_a.id)
        service.cancel_session(staff_actor, first.id)

        listed = service.list_sessions(staff_actor)
        assert [entry["id"] for entry in listed] == [second.id, first.id]

        in_progress = service.list_sessions(staff_actor, status="in_progress")
        assert [entry["id"] for entry in in_progress] == [second.id]

    def test_list_sessions_pagination(self, service, staff_actor, location_a):
        created = [service.create_session(staff_actor, location_a.id).id for _ in range(3)]

        page_one = service.list_sessions(staff_actor, page=1, limit=2)
        page_two = service.list_sessions(staff_actor, page=2, limit=2)

        assert len(page_one) == 2
        assert len(page_two) == 1
        assert {entry["id"] for entry in page_one + page_two} == set(created)
        assert service.count_sessions(staff_actor) == 3

    def test_count_sessions_applies_status_filter(self, service, staff_actor, location_a):
        first = service.create_session(staff_actor, location_a.id)
        service.create_session(staff_actor, location_a.id)
        service.cancel_session(staff_actor, first.id)

        assert service.count_sessions(staff_actor, status="cancelled") == 1
        assert service.count_sessions(staff_actor, status="IN_PROGRESS") == 1
        with pytest.raises(ValidationError):
            service.count_sessions(staff_actor, status="ARCHIVED")

    def test_list_sessions_rejects_bad_input(self, service, staff_actor):
        with pytest.raises(ValidationError):
            service.list_sessions(staff_actor, page=0)
        with pytest.raises(ValidationError):
            service.list_sessions(staff_actor, status="ARCHIVED")

    def test_expected_items_excludes_counted(
        self, service, staff_actor, location_a, item_gloves, item_syringes, stock
    ):
        stock(location_a, item_gloves, 10)
        stock(location_a, item_syringes, 100)
        count_session = service.create_session(staff_actor, location_a.id)
        service.add_or_update_line(staff_actor, count_session.id, item_gloves.id, 10)

        expected = service.get_expected_items(staff_actor, count_session.id)

        assert [entry["item_id"] for entry in expected] == [item_syringes.id]
        assert expected[0]["system_quantity"] == 100
