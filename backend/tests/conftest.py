"""
Pytest fixtures for fuel station settlement tests.

Provides an in-memory database, one tenant with a fully staffed station,
a priced petrol nozzle, and a helper that records meter readings.
"""

from datetime import date
from decimal import Decimal

import pytest
from fuelcash import create_app
from fuelcash.extensions import db
from fuelcash.models import Organization, Station, Nozzle, FuelPrice, User
from fuelcash.services import reading_service


BUSINESS_DATE = date(2026, 10, 17)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

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


@pytest.fixture(scope='function')
def org(db_session):
    org = Organization(name="Highway Fuels", code="HWF", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    org = Organization(name="Rival Petroleum", code="RIV", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def station(db_session, org):
    """Station without recipients; staff fixtures wire themselves in."""
    station = Station(org_id=org.id, name="Junction 4", code="J4")
    db_session.add(station)
    db_session.commit()
    return station


@pytest.fixture(scope='function')
def other_station(db_session, other_org):
    station = Station(org_id=other_org.id, name="Rival Depot", code="RD")
    db_session.add(station)
    db_session.commit()
    return station


def _make_user(db_session, org_id, station_id, name, role):
    user = User(
        org_id=org_id,
        station_id=station_id,
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def employee(db_session, org, station):
    return _make_user(db_session, org.id, station.id, "Pump Attendant", "employee")


@pytest.fixture(scope='function')
def manager(db_session, org, station):
    user = _make_user(db_session, org.id, station.id, "Station Manager", "manager")
    station.manager_user_id = user.id
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session, org, station):
    user = _make_user(db_session, org.id, None, "Station Owner", "owner")
    station.owner_user_id = user.id
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def outsider(db_session, other_org, other_station):
    """Manager of a station in a different organization."""
    user = _make_user(db_session, other_org.id, other_station.id, "Rival Manager", "manager")
    other_station.manager_user_id = user.id
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def staffed_station(station, employee, manager, owner):
    return station


@pytest.fixture(scope='function')
def nozzle(db_session, station):
    nozzle = Nozzle(station_id=station.id, nozzle_number=1, fuel_type="petrol")
    db_session.add(nozzle)
    db_session.commit()
    return nozzle


@pytest.fixture(scope='function')
def petrol_price(db_session, station):
    """Petrol at 100.00 per litre from the start of the month."""
    price = FuelPrice(
        station_id=station.id,
        fuel_type="petrol",
        price=Decimal("100.00"),
        effective_from=date(2026, 10, 1),
    )
    db_session.add(price)
    db_session.commit()
    return price


@pytest.fixture(scope='function')
def record_sale(db_session, staffed_station, nozzle, petrol_price, employee):
    """
    Helper that records a sale of `litres` on the nozzle.

    The first call seeds an initial meter reading at 1000.
    """
    def _record(litres, *, cash=0, online=0, credit=0, on_date=BUSINESS_DATE):
        previous = reading_service.get_previous_reading(nozzle.id, on_date)
        if previous is None:
            previous = reading_service.record_reading(
                staffed_station.id,
                nozzle.id,
                Decimal("1000"),
                reading_date=on_date,
                entered_by_user_id=employee.id,
                is_initial_reading=True,
            )
        return reading_service.record_reading(
            staffed_station.id,
            nozzle.id,
            Decimal(previous.reading_value) + Decimal(str(litres)),
            reading_date=on_date,
            entered_by_user_id=employee.id,
            cash_amount=cash,
            online_amount=online,
            credit_amount=credit,
        )

    return _record


def actor_headers(user) -> dict:
    """Helper to create the upstream identity header for a user."""
    return {'X-User-Id': str(user.id)}
