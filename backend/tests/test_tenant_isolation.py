# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for stock counts.

These tests create two practices with separate locations, items and users,
then verify that:
1. An actor in Practice A cannot read or write Practice B's sessions/lines
2. Passing a foreign location_id or item_id is rejected
3. Cross-tenant lookups raise NotFound (never revealing existence)
4. Security events are logged for cross-tenant access attempts
"""

import pytest

from clinicstock.errors import NotFoundError
from clinicstock.extensions import db
from clinicstock.models import SecurityEvent, StockCountSession, StockCountStatus
from clinicstock.services.tenant_service import (
    require_item_in_practice,
    require_location_in_practice,
    scoped_query,
)

from conftest import get_quantity


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_require_location_in_practice_valid(self, db_session, practice_a, location_a):
        assert require_location_in_practice(location_a.id, practice_a.id).id == location_a.id

    def test_require_location_cross_tenant(self, db_session, practice_a, location_b):
        with pytest.raises(NotFoundError) as exc_info:
            require_location_in_practice(location_b.id, practice_a.id)

        # Same message as a missing row: existence is not revealed
        assert exc_info.value.message == f"Location with ID '{location_b.id}' not found"

    def test_require_item_nonexistent_logs_nothing(self, db_session, practice_a):
        with pytest.raises(NotFoundError):
            require_item_in_practice(987654, practice_a.id)

        assert db_session.query(SecurityEvent).count() == 0

    def test_cross_tenant_access_logs_security_event(self, db_session, practice_a, item_b):
        with pytest.raises(NotFoundError):
            require_item_in_practice(item_b.id, practice_a.id)

        event = db_session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").one()
        assert event.practice_id == practice_a.id
        assert event.success is False

    def test_scoped_query_requires_practice(self, db_session):
        with pytest.raises(ValueError):
            scoped_query(StockCountSession, None)


class TestStockCountIsolation:

    @pytest.fixture
    def foreign_session(self, service, actor_b, location_b, item_b, stock):
        stock(location_b, item_b, 20)
        count_session = service.create_session(actor_b, location_b.id)
        result = service.add_or_update_line(actor_b, count_session.id, item_b.id, 18)
        return count_session.id, result.line_id

    def test_cannot_create_session_at_foreign_location(self, service, admin_actor, location_b):
        with pytest.raises(NotFoundError):
            service.create_session(admin_actor, location_b.id)

        assert db.session.query(StockCountSession).count() == 0

    def test_cannot_count_foreign_item(self, service, admin_actor, location_a, item_b):
        count_session = service.create_session(admin_actor, location_a.id)

        with pytest.raises(NotFoundError):
            service.add_or_update_line(admin_actor, count_session.id, item_b.id, 1)

    def test_cannot_read_foreign_session(self, service, admin_actor, foreign_session):
        session_id, _ = foreign_session

        with pytest.raises(NotFoundError):
            service.get_session(admin_actor, session_id)
        with pytest.raises(NotFoundError):
            service.get_expected_items(admin_actor, session_id)
        with pytest.raises(NotFoundError):
            service.detect_session_changes(admin_actor, session_id)

    def test_foreign_sessions_not_listed(self, service, admin_actor, foreign_session):
        assert service.list_sessions(admin_actor) == []
        assert service.count_sessions(admin_actor) == 0

    def test_cannot_complete_foreign_session(
        self, service, admin_actor, foreign_session, location_b, item_b
    ):
        session_id, _ = foreign_session

        with pytest.raises(NotFoundError):
            service.complete_session(admin_actor, session_id, apply_adjustments=True)

        assert get_quantity(location_b, item_b) == 20
        status = db.session.get(StockCountSession, session_id, populate_existing=True).status
        assert status == StockCountStatus.IN_PROGRESS

    def test_cannot_cancel_or_delete_foreign_session(self, service, admin_actor, foreign_session):
        session_id, _ = foreign_session

        with pytest.raises(NotFoundError):
            service.cancel_session(admin_actor, session_id)
        with pytest.raises(NotFoundError):
            service.delete_session(admin_actor, session_id)

        assert db.session.get(StockCountSession, session_id) is not None

    def test_cannot_edit_foreign_line(self, service, admin_actor, foreign_session):
        _, line_id = foreign_session

        with pytest.raises(NotFoundError):
            service.update_line(admin_actor, line_id, 1)
        with pytest.raises(NotFoundError):
            service.remove_line(admin_actor, line_id)

        events = db.session.query(SecurityEvent).filter_by(event_type="CROSS_TENANT_ACCESS_DENIED").count()
        assert events == 2
