"""
Pytest fixtures for rentkit backend tests.

Provides test database setup, catalog/customer factories, and test client.
"""

from datetime import date

import pytest
from rentkit import create_app
from rentkit.extensions import db
from rentkit.models import Customer, Item
from rentkit.services.items_service import name_key
from rentkit.services.reservation_service import create_reservation


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RESERVATION_RETRY_BACKOFF': 0,
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
def make_item(db_session):
    """Factory: create an item with the given stock."""
    def _make(name: str, total_quantity: int, unit: str = "pcs", price_cents: int | None = None) -> Item:
        item = Item(
            name=name,
            name_key=name_key(name),
            unit=unit,
            total_quantity=total_quantity,
            price_cents=price_cents,
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    """Create a default customer."""
    c = Customer(first_name="Test", last_name="Customer 1")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def reserve(customer):
    """
    Factory: create a reservation through the mutator.

    lines is a list of (Item, quantity) pairs.
    """
    def _reserve(lines, start: date, end: date, status="CONFIRMED", **fields):
        return create_reservation(
            customer_id=customer.id,
            start_date=start,
            end_date=end,
            lines=[(item.id, qty) for item, qty in lines],
            status=status,
            **fields,
        )
    return _reserve
