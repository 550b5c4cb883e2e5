"""
Pytest fixtures for ClickSilog backend tests.

Provides the app (in-memory SQLite, mock payments), a per-test clean
database, the test client, staff users, and order factories.
"""

import pytest

from clicksilog import create_app
from clicksilog.config import TestConfig
from clicksilog.extensions import db
from clicksilog.models import Discount, User
from clicksilog.services import order_service
from clicksilog.services.paymongo import MockPaymentProvider


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
        app.extensions["rate_limiter"].reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def provider(app):
    """Fresh mock payment provider for each test."""
    mock = MockPaymentProvider()
    previous = app.extensions["payment_provider"]
    app.extensions["payment_provider"] = mock
    yield mock
    app.extensions["payment_provider"] = previous


def _make_user(session, username, role, is_active=True):
    user = User(username=username, display_name=username.title(), role=role, is_active=is_active)
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin", "admin")


@pytest.fixture
def cashier_user(db_session):
    return _make_user(db_session, "cashier", "cashier")


@pytest.fixture
def kitchen_user(db_session):
    return _make_user(db_session, "kitchen", "kitchen")


@pytest.fixture
def customer_user(db_session):
    return _make_user(db_session, "customer", "customer")


def _order_payload(total=150.0, payment_method="cash", **extra):
    payload = {
        "items": [
            {
                "id": "silog-1",
                "name": "Tapsilog",
                "price": total,
                "qty": 1,
                "addOns": [],
                "specialInstructions": "",
                "totalItemPrice": total,
            }
        ],
        "subtotal": total,
        "total": total,
        "paymentMethod": payment_method,
        "tableNumber": "5",
        "source": "customer",
    }
    payload.update(extra)
    return payload


@pytest.fixture
def order_payload():
    """Builder for order placement bodies."""
    return _order_payload


@pytest.fixture
def make_order(db_session):
    """Factory placing an order through the order service."""
    def _make(total=150.0, payment_method="cash", **extra):
        return order_service.place_order(_order_payload(total, payment_method, **extra))
    return _make


@pytest.fixture
def gcash_order(make_order):
    return make_order(total=150.0, payment_method="gcash")


@pytest.fixture
def discounts(db_session):
    save10 = Discount(code="SAVE10", name="10% off", type="percentage", value=10, active=True)
    flat100 = Discount(code="FLAT100", name="₱100 off", type="fixed", value=100, active=True)
    db_session.add_all([save10, flat100])
    db_session.commit()
    return {"SAVE10": save10, "FLAT100": flat100}
