"""Pytest fixtures for the fleet admin app."""

import os

# Must be set before the app module reads its configuration.
os.environ['FLEET_ADMIN_DATABASE_URI'] = 'sqlite://'
os.environ['FLEET_ADMIN_SECRET_KEY'] = 'test-secret'

import pytest

import fleet_admin
from fleet_admin import Car, Client, IncomeExpenseEntry, db as _db


@pytest.fixture
def app():
    fleet_admin.app.config.update(TESTING=True)
    with fleet_admin.app.app_context():
        _db.create_all()
        yield fleet_admin.app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def owner(db):
    person = Client(first_name='Dana', last_name='Reyes', email='dana@example.com', phone='555-0100')
    db.session.add(person)
    db.session.commit()
    return person


@pytest.fixture
def car(db, owner):
    vehicle = Car(vin='1HGCM82633A004352', make='Toyota', model='Camry', year=2021,
                  license_plate='ABC123', client_id=owner.id, fuel_type='Regular')
    db.session.add(vehicle)
    db.session.commit()
    return vehicle


@pytest.fixture
def add_entry(db):
    """Write one ledger cell directly."""
    def _add(car, year, month, category, field, value):
        db.session.add(IncomeExpenseEntry(car_id=car.id, year=year, month=month,
                                          category=category, field=field, value=value))
        db.session.commit()
    return _add
