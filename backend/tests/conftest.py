"""
Pytest fixtures for order engine tests.

Provides test database setup, business context headers, inventory fixtures
and the test client.
"""

import pytest

from orderengine import create_app
from orderengine.extensions import db
from orderengine.services.inventory_service import InventoryService
from orderengine.services.order_service import OrderLifecycleService


BUSINESS_A = 1
BUSINESS_B = 2
USER_A = 10
USER_B = 20


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_SECONDS': 0.01,
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
def inventory_service(db_session):
    return InventoryService(db_session, retry_backoff=0.01)


@pytest.fixture(scope='function')
def order_service(db_session):
    return OrderLifecycleService(db_session, retry_backoff=0.01)


@pytest.fixture(scope='function')
def widget(inventory_service):
    """Stocked item in business A with 10 units."""
    return inventory_service.create_record(
        business_id=BUSINESS_A,
        user_id=USER_A,
        name="Widget",
        initial_quantity=10,
        cost_per_unit_cents=250,
        low_stock_threshold=3,
    )


@pytest.fixture(scope='function')
def gadget(inventory_service):
    """Stocked item in business A with 5 units."""
    return inventory_service.create_record(
        business_id=BUSINESS_A,
        user_id=USER_A,
        name="Gadget",
        initial_quantity=5,
    )


def business_headers(business_id: int = BUSINESS_A, user_id: int = USER_A) -> dict:
    """Helper to create the gateway identity headers."""
    return {'X-Business-Id': str(business_id), 'X-User-Id': str(user_id)}


def order_payload(*lines, tax_cents: int = 0, discount_cents: int = 0, **extra) -> dict:
    """
    Build a create-order body whose totals reconcile.

    Each line is (inventory_id or None, quantity, unit_price_cents).
    """
    items = []
    for index, (inventory_id, quantity, unit_price_cents) in enumerate(lines):
        item = {
            "product_name": f"Item {index + 1}",
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
        }
        if inventory_id is not None:
            item["inventory_id"] = inventory_id
        items.append(item)

    subtotal = sum(q * p for _, q, p in lines)
    payload = {
        "items": items,
        "subtotal_cents": subtotal,
        "tax_cents": tax_cents,
        "discount_cents": discount_cents,
        "total_cents": subtotal - discount_cents + tax_cents,
    }
    payload.update(extra)
    return payload
