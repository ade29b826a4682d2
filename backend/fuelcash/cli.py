# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/fuelcash/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: organization, station, manager/owner/employee, one nozzle and a price.
#
# Settlement inspection:
# - python -m flask settlements list --station-id 1 --date 2026-10-17
#   List settlements recorded for a station (optionally for one business date).
#
# Handover inspection:
# - python -m flask handovers pending --station-id 1
#   List handovers still waiting for confirmation.

import click
from decimal import Decimal
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Station, Nozzle, FuelPrice, User, CashHandover
from .models.auth import ROLE_EMPLOYEE, ROLE_MANAGER, ROLE_OWNER
from .models.handovers import STATUS_PENDING
from .services import settlement_service
from .time_utils import today
from .validation import ValidationError, parse_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
    db.create_all()
    click.echo("PASS Schema created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DEV/TEST only: drop every table and recreate the schema.

    Readings, settlements and handovers are lost; there is no undo.
    """
    if not yes:
        click.confirm("WARN This deletes every reading, settlement and handover. Continue?", abort=True)

    click.echo("DELETE  Dropping tables...")
    db.drop_all()

    click.echo("BUILD  Recreating schema...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' to add demo data.")


def _get_or_create_user(org_id, station_id, name, email, role):
    user = db.session.query(User).filter_by(org_id=org_id, email=email).first()
    if user:
        click.echo(f"SKIP  User {email} already exists (ID: {user.id})")
        return user
    user = User(org_id=org_id, station_id=station_id, name=name, email=email, role=role)
    db.session.add(user)
    db.session.flush()
    click.echo(f"PASS Created {role}: {email} (ID: {user.id})")
    return user


@system_group.command('seed-demo')
@click.option('--org', 'org_name', default='Demo Fuels', help='Organization name')
@click.option('--price', default='100.00', help='Petrol price per litre')
@with_appcontext
def seed_demo(org_name, price):
    """
    Seed a demo tenant for local testing.

    Creates (if missing):
    - Organization and one station
    - Manager, owner and employee users, wired as the station's recipients
    - Nozzle 1 (petrol) and a petrol price effective today
    """
    click.echo("START Seeding demo data...")

    org = db.session.query(Organization).filter_by(name=org_name).first()
    if not org:
        org = Organization(name=org_name, code="DEMO", is_active=True)
        db.session.add(org)
        db.session.flush()
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id})")

    station = db.session.query(Station).filter_by(org_id=org.id, name="Main Station").first()
    if not station:
        station = Station(org_id=org.id, name="Main Station", code="MAIN")
        db.session.add(station)
        db.session.flush()
        click.echo(f"PASS Created station: {station.name} (ID: {station.id})")

    manager = _get_or_create_user(org.id, station.id, "Station Manager", "manager@fuelcash.local", ROLE_MANAGER)
    owner = _get_or_create_user(org.id, None, "Owner", "owner@fuelcash.local", ROLE_OWNER)
    _get_or_create_user(org.id, station.id, "Pump Attendant", "employee@fuelcash.local", ROLE_EMPLOYEE)

    station.manager_user_id = manager.id
    station.owner_user_id = owner.id

    nozzle = db.session.query(Nozzle).filter_by(station_id=station.id, nozzle_number=1).first()
    if not nozzle:
        db.session.add(Nozzle(station_id=station.id, nozzle_number=1, fuel_type="petrol"))
        click.echo("PASS Created nozzle 1 (petrol)")

    existing_price = db.session.query(FuelPrice).filter_by(
        station_id=station.id, fuel_type="petrol", effective_from=today()
    ).first()
    if not existing_price:
        db.session.add(FuelPrice(
            station_id=station.id, fuel_type="petrol", price=Decimal(price), effective_from=today()
        ))
        click.echo(f"PASS Set petrol price {price} from {today().isoformat()}")

    db.session.commit()
    click.echo(f"DONE Demo station ID: {station.id}")


@click.group('settlements')
def settlements_group():
    """Settlement inspection commands."""


@settlements_group.command('list')
@click.option('--station-id', type=int, required=True, help='Station ID')
@click.option('--date', 'date_str', default=None, help='Business date (YYYY-MM-DD)')
@with_appcontext
def list_settlements_cli(station_id, date_str):
    """
    List settlements for a station.

    Example:
        flask settlements list --station-id 1
        flask settlements list --station-id 1 --date 2026-10-17
    """
    try:
        settlement_date = parse_date(date_str, "date") if date_str else None
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--date")

    settlements = settlement_service.list_settlements(station_id, settlement_date)
    if not settlements:
        click.echo("No settlements found.")
        return

    click.echo(f"\n{'ID':<6} {'Date':<12} {'Expected':>12} {'Actual cash':>12} {'Status':<10} {'Final':<5}")
    click.echo("-" * 62)
    for s in settlements:
        click.echo(
            f"{s.id:<6} {s.settlement_date.isoformat():<12} {str(s.expected_total):>12} "
            f"{str(s.actual_cash):>12} {s.variance_status:<10} {'yes' if s.is_final else 'no':<5}"
        )
    click.echo(f"\nTotal: {len(settlements)} settlement(s)")


@click.group('handovers')
def handovers_group():
    """Cash handover inspection commands."""


@handovers_group.command('pending')
@click.option('--station-id', type=int, required=True, help='Station ID')
@with_appcontext
def pending_handovers_cli(station_id):
    """
    List handovers waiting for confirmation.

    Example:
        flask handovers pending --station-id 1
    """
    handovers = (
        db.session.query(CashHandover)
        .filter_by(station_id=station_id, status=STATUS_PENDING)
        .order_by(CashHandover.handover_date, CashHandover.id)
        .all()
    )
    if not handovers:
        click.echo("No pending handovers.")
        return

    click.echo(f"\n{'ID':<6} {'Date':<12} {'Type':<22} {'From':<6} {'To':<6} {'Expected':>12}")
    click.echo("-" * 68)
    for h in handovers:
        click.echo(
            f"{h.id:<6} {h.handover_date.isoformat():<12} {h.handover_type:<22} "
            f"{str(h.from_user_id or '-'):<6} {str(h.to_user_id or '-'):<6} {str(h.expected_amount):>12}"
        )
    click.echo(f"\nTotal: {len(handovers)} pending")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(settlements_group)
    app.cli.add_command(handovers_group)
