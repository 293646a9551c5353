"""
Pytest fixtures for clinicstock backend tests.

Provides test database setup, tenant isolation fixtures, and test client.
"""

import pytest

from clinicstock import create_app
from clinicstock.extensions import db
from clinicstock.models import (
    InventoryRecord,
    Item,
    Location,
    Practice,
    PracticeMembership,
    User,
)
from clinicstock.permissions import MembershipStatus, PracticeRole, RequestContext
from clinicstock.services.audit_service import AuditSink
from clinicstock.services.concurrency import TransactionRunner
from clinicstock.services.inventory_ledger import InventoryLedger
from clinicstock.services.notification_service import LowStockChecker
from clinicstock.services.permission_service import PermissionGate
from clinicstock.services.stock_count_service import StockCountService, build_stock_count_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOW_STOCK_NOTIFICATIONS_STRICT': False,
    'TRANSACTION_RETRY_ATTEMPTS': 3,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


def _make_member(practice, email: str, role: str, status: str = MembershipStatus.ACTIVE) -> User:
    user = User(email=email, name=email.split('@')[0], is_active=True)
    db.session.add(user)
    db.session.flush()
    db.session.add(PracticeMembership(
        practice_id=practice.id,
        user_id=user.id,
        role=role,
        status=status,
    ))
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def practice_a(db_session):
    """Create Practice A (first tenant)."""
    practice = Practice(name="Practice A - Riverside Clinic", is_active=True)
    db_session.add(practice)
    db_session.commit()
    return practice


@pytest.fixture(scope='function')
def practice_b(db_session):
    """Create Practice B (second tenant)."""
    practice = Practice(name="Practice B - Hillcrest Vets", is_active=True)
    db_session.add(practice)
    db_session.commit()
    return practice


@pytest.fixture(scope='function')
def location_a(db_session, practice_a):
    """Create a location in Practice A."""
    location = Location(practice_id=practice_a.id, name="Main Pharmacy")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_b(db_session, practice_b):
    """Create a location in Practice B."""
    location = Location(practice_id=practice_b.id, name="Treatment Room")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def admin_user(db_session, practice_a):
    return _make_member(practice_a, "admin@riverside.test", PracticeRole.ADMIN)


@pytest.fixture(scope='function')
def staff_user(db_session, practice_a):
    return _make_member(practice_a, "staff@riverside.test", PracticeRole.STAFF)


@pytest.fixture(scope='function')
def viewer_user(db_session, practice_a):
    return _make_member(practice_a, "viewer@riverside.test", PracticeRole.VIEWER)


@pytest.fixture(scope='function')
def user_b(db_session, practice_b):
    """Create an ADMIN of Practice B."""
    return _make_member(practice_b, "admin@hillcrest.test", PracticeRole.ADMIN)


@pytest.fixture(scope='function')
def admin_actor(practice_a, admin_user):
    return RequestContext(practice_id=practice_a.id, user_id=admin_user.id, role=PracticeRole.ADMIN)


@pytest.fixture(scope='function')
def staff_actor(practice_a, staff_user):
    return RequestContext(practice_id=practice_a.id, user_id=staff_user.id, role=PracticeRole.STAFF)


@pytest.fixture(scope='function')
def viewer_actor(practice_a, viewer_user):
    return RequestContext(practice_id=practice_a.id, user_id=viewer_user.id, role=PracticeRole.VIEWER)


@pytest.fixture(scope='function')
def actor_b(practice_b, user_b):
    return RequestContext(practice_id=practice_b.id, user_id=user_b.id, role=PracticeRole.ADMIN)


@pytest.fixture(scope='function')
def item_gloves(db_session, practice_a):
    item = Item(practice_id=practice_a.id, name="Nitrile Gloves (M)", sku="GLV-M", unit="box")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def item_syringes(db_session, practice_a):
    item = Item(practice_id=practice_a.id, name="Syringe 5ml", sku="SYR-5", unit="each")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def item_b(db_session, practice_b):
    """Create an item in Practice B."""
    item = Item(practice_id=practice_b.id, name="Bandage Roll", sku="BND-1", unit="roll")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def stock(db_session):
    """Set the on-hand quantity of an item at a location (test setup only)."""
    def _stock(location, item, quantity: int, reorder_point: int | None = None) -> InventoryRecord:
        record = db_session.query(InventoryRecord).filter_by(
            location_id=location.id,
            item_id=item.id,
        ).first()
        if record is None:
            record = InventoryRecord(location_id=location.id, item_id=item.id, quantity=quantity)
            db_session.add(record)
        else:
            record.quantity = quantity
        record.reorder_point = reorder_point
        db_session.commit()
        return record

    return _stock


@pytest.fixture(scope='function')
def service(app, db_session):
    return build_stock_count_service(app.config)


@pytest.fixture(scope='function')
def make_service(app, db_session):
    """Build a service with selected collaborators replaced."""
    def _make(**overrides) -> StockCountService:
        params = dict(
            ledger=InventoryLedger(),
            audit=AuditSink(),
            permissions=PermissionGate(),
            low_stock=LowStockChecker(),
            transaction=TransactionRunner(attempts=3, backoff_base=0),
            strict_notifications=False,
        )
        params.update(overrides)
        return StockCountService(**params)

    return _make


def get_quantity(location, item) -> int:
    """Helper to read the committed ledger quantity."""
    record = (
        db.session.query(InventoryRecord)
        .filter_by(location_id=location.id, item_id=item.id)
        .populate_existing()
        .first()
    )
    return record.quantity if record is not None else 0


def actor_headers(user, practice) -> dict:
    """Helper to create the gateway identity headers."""
    return {'X-User-Id': str(user.id), 'X-Practice-Id': str(practice.id)}
