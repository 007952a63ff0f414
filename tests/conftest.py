"""
conftest.py -- Shared test fixtures

Swaps the MongoDB handle for an in-memory mongomock database (with the
real index registry applied) and provides a TestClient plus factory
fixtures for users, cars and bookings.

- Each test function gets a fresh, empty database
- Identity is passed the way the upstream auth provider does it: X-User-Id
"""

from datetime import date, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from database import create_document, ensure_indexes
from schemas import Booking, Car, User

# Placeholder hash; fixtures that need a real password call main.hash_password
FAKE_HASH = "$2b$12$placeholderplaceholderplaceholderplaceholderplacehol"


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    """Fresh in-memory database for every test."""
    test_db = mongomock.MongoClient()["carrental_test"]
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(main, "db", test_db)
    ensure_indexes(test_db)
    yield test_db


@pytest.fixture()
def client() -> TestClient:
    return TestClient(main.app)


@pytest.fixture()
def as_user():
    """Build the identity header for a user id."""
    def _headers(user_id: str) -> dict:
        return {"X-User-Id": user_id}
    return _headers


@pytest.fixture()
def make_user():
    def _make(name="Test User", email="user@carhire.io", role="renter", password_hash=FAKE_HASH) -> str:
        return create_document("user", User(name=name, email=email, role=role, password_hash=password_hash))
    return _make


@pytest.fixture()
def host(make_user) -> str:
    """A user who lists cars."""
    return make_user(name="Hana Host", email="host@carhire.io", role="host")


@pytest.fixture()
def renter(make_user) -> str:
    """A user who rents cars."""
    return make_user(name="Ravi Renter", email="renter@carhire.io")


@pytest.fixture()
def make_car(host):
    def _make(owner_id=None, **overrides) -> str:
        fields = dict(
            owner_id=owner_id or host,
            make="Toyota",
            model="Corolla",
            year=2022,
            type="sedan",
            transmission="automatic",
            fuel_type="hybrid",
            seats=5,
            price_per_day=50.0,
            location="Austin",
            description="Clean and economical",
        )
        fields.update(overrides)
        return create_document("car", Car(**fields))
    return _make


@pytest.fixture()
def car(make_car) -> str:
    return make_car()


@pytest.fixture()
def make_booking(renter, car):
    def _make(renter_id=None, car_id=None, status="pending", start=None, days=3) -> str:
        start = start or date.today() + timedelta(days=10)
        return create_document("booking", Booking(
            renter_id=renter_id or renter,
            car_id=car_id or car,
            start_date=start,
            end_date=start + timedelta(days=days),
            total_days=days,
            total_price=50.0 * days,
            status=status,
        ))
    return _make


@pytest.fixture()
def completed_booking(make_booking) -> str:
    return make_booking(status="completed", start=date.today() - timedelta(days=20))
