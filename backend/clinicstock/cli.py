# Overview: Flask CLI command groups for bootstrap and stock count inspection.

# backend/clinicstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo practice: one location, admin/staff/viewer users, stocked items.
#
# Stock count inspection:
# - python -m flask counts list --practice-id 1 [--status IN_PROGRESS]
#   List count sessions for a practice, newest first.
# - python -m flask counts show 42 --practice-id 1
#   Show one session with its lines.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import InventoryRecord, Item, Location, Practice, PracticeMembership, User
from .permissions import MembershipStatus, PracticeRole, RequestContext
from .services.stock_count_service import build_stock_count_service


DEMO_PRACTICE_NAME = "Demo Clinic"

DEMO_USERS = [
    ("admin@clinicstock.local", "Demo Admin", PracticeRole.ADMIN),
    ("staff@clinicstock.local", "Demo Staff", PracticeRole.STAFF),
    ("viewer@clinicstock.local", "Demo Viewer", PracticeRole.VIEWER),
]

# (name, sku, unit, quantity, reorder_point)
DEMO_ITEMS = [
    ("Nitrile Gloves (M)", "GLV-M", "box", 40, 10),
    ("Syringe 5ml", "SYR-5", "each", 250, 50),
    ("Gauze Pads 4x4", "GZE-44", "pack", 12, 15),
    ("Alcohol Prep Pads", "ALC-PP", "box", 8, 5),
]


def _operator_actor(practice_id: int) -> RequestContext:
    """Operator reads run as an ADMIN system actor scoped to one practice."""
    return RequestContext(practice_id=practice_id, user_id=None, role=PracticeRole.ADMIN)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' to add demo data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create a demo practice for local testing.

    Safe to run repeatedly: existing rows are reused, never duplicated.
    """
    practice = db.session.query(Practice).filter_by(name=DEMO_PRACTICE_NAME).first()
    if practice is None:
        practice = Practice(name=DEMO_PRACTICE_NAME, is_active=True)
        db.session.add(practice)
        db.session.flush()
        click.echo(f"PASS Created practice: {practice.name} (ID: {practice.id})")
    else:
        click.echo(f"PASS Using existing practice: {practice.name} (ID: {practice.id})")

    location = db.session.query(Location).filter_by(practice_id=practice.id, name="Main Pharmacy").first()
    if location is None:
        location = Location(practice_id=practice.id, name="Main Pharmacy")
        db.session.add(location)
        db.session.flush()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")

    for email, name, role in DEMO_USERS:
        user = db.session.query(User).filter_by(email=email).first()
        if user is None:
            user = User(email=email, name=name, is_active=True)
            db.session.add(user)
            db.session.flush()

        membership = db.session.query(PracticeMembership).filter_by(
            practice_id=practice.id,
            user_id=user.id,
        ).first()
        if membership is None:
            db.session.add(PracticeMembership(
                practice_id=practice.id,
                user_id=user.id,
                role=role,
                status=MembershipStatus.ACTIVE,
            ))
            click.echo(f"PASS Created user: {email} (ID: {user.id}) with role '{role}'")
        else:
            click.echo(f"WARN  User '{email}' already a member, skipping...")

    for name, sku, unit, quantity, reorder_point in DEMO_ITEMS:
        item = db.session.query(Item).filter_by(practice_id=practice.id, sku=sku).first()
        if item is None:
            item = Item(practice_id=practice.id, name=name, sku=sku, unit=unit, is_active=True)
            db.session.add(item)
            db.session.flush()

        record = db.session.query(InventoryRecord).filter_by(location_id=location.id, item_id=item.id).first()
        if record is None:
            db.session.add(InventoryRecord(
                location_id=location.id,
                item_id=item.id,
                quantity=quantity,
                reorder_point=reorder_point,
            ))

    db.session.commit()

    click.echo("\n" + "="*60)
    click.echo("DONE Demo data ready.")
    click.echo("="*60)
    click.echo(f"\nSend X-Practice-Id: {practice.id} with X-User-Id of one of the demo users.")


@click.group('counts')
def counts_group():
    """Stock count inspection commands."""


@counts_group.command('list')
@click.option('--practice-id', type=int, required=True, help='Practice (tenant) ID')
@click.option('--status', type=click.Choice(['IN_PROGRESS', 'COMPLETED', 'CANCELLED'], case_sensitive=False),
              help='Filter by status')
@click.option('--limit', type=int, default=None, help='Maximum sessions to show')
@with_appcontext
def list_counts(practice_id, status, limit):
    """
    List stock count sessions for a practice.

    Example:
        flask counts list --practice-id 1
        flask counts list --practice-id 1 --status IN_PROGRESS
    """
    try:
        sessions = build_stock_count_service().list_sessions(
            _operator_actor(practice_id),
            limit=limit,
            status=status,
        )
    except DomainError as e:
        raise click.ClickException(e.message)

    if not sessions:
        click.echo("No stock counts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<6} {'Location':<25} {'Status':<12} {'Lines':<6} {'Created':<22} {'Completed'}")
    click.echo("="*100)

    for entry in sessions:
        click.echo(
            f"{entry['id']:<6} {(entry['location_name'] or ''):<25} {entry['status']:<12} "
            f"{entry['line_count']:<6} {(entry['created_at'] or ''):<22} {entry['completed_at'] or '-'}"
        )

    click.echo("="*100 + "\n")


@counts_group.command('show')
@click.argument('session_id', type=int)
@click.option('--practice-id', type=int, required=True, help='Practice (tenant) ID')
@with_appcontext
def show_count(session_id, practice_id):
    """
    Show one stock count session with its lines.

    Example:
        flask counts show 42 --practice-id 1
    """
    try:
        session = build_stock_count_service().get_session(_operator_actor(practice_id), session_id)
    except DomainError as e:
        raise click.ClickException(e.message)

    click.echo(f"\nStock count #{session['id']} at {session['location_name']}")
    click.echo(f"Status: {session['status']}")
    if session['notes']:
        click.echo(f"Notes: {session['notes']}")

    lines = session['lines']
    if not lines:
        click.echo("No lines counted.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Item':<30} {'SKU':<12} {'System':>8} {'Counted':>8} {'Variance':>9}")
    click.echo("="*80)
    for line in lines:
        click.echo(
            f"{(line['item_name'] or ''):<30} {(line['item_sku'] or ''):<12} "
            f"{line['system_quantity']:>8} {line['counted_quantity']:>8} {line['variance']:>+9}"
        )
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(counts_group)
