"""
Pytest fixtures for the order engine tests.

Provides the application on an in-memory database, a per-test table wipe,
catalog fixtures and a test client.
"""

import pytest

from orderdesk import create_app
from orderdesk.extensions import db
from orderdesk.models import Product, PaymentType
from orderdesk.models.catalog import PAYMENT_CLASS_TERM, PAYMENT_CLASS_IMMEDIATE


ACTOR = "alice"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ORDERDESK_RETRY_BACKOFF': 0,
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
        app.config['ORDERDESK_ALLOW_EDIT_WHILE_RESERVED'] = False


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product("SKU-1", on_hand=10, price_cents=1000)."""
    def _make(sku, on_hand=0, price_cents=1000, name=None, is_active=True):
        product = Product(
            sku=sku,
            name=name or f"Product {sku}",
            price_cents=price_cents,
            on_hand=on_hand,
            reserved=0,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def term_payment(db_session):
    """Boleto-style term payment type without a default schedule."""
    pt = PaymentType(name="Boleto", classification=PAYMENT_CLASS_TERM, is_active=True)
    db_session.add(pt)
    db_session.commit()
    return pt


@pytest.fixture(scope='function')
def cash_payment(db_session):
    pt = PaymentType(name="Cash", classification=PAYMENT_CLASS_IMMEDIATE, is_active=True)
    db_session.add(pt)
    db_session.commit()
    return pt


@pytest.fixture(scope='function')
def actor():
    return ACTOR


@pytest.fixture(scope='function')
def headers():
    return {"X-Actor": ACTOR}
