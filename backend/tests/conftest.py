"""
Pytest fixtures for checkout engine tests.

Provides an in-memory database, a test client, a small catalog and a
ready-made checkout request builder.
"""

import pytest

from checkout_engine import create_app
from checkout_engine.extensions import db
from checkout_engine.models import CartItem, Product
from checkout_engine.services.checkout_service import Address, CheckoutRequest, RequestedLine
from checkout_engine.services.permission_service import get_permission_cache


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'PAYMENT_GATEWAY': 'manual',
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
        db.session.rollback()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_permission_cache().invalidate()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_product(session, *, name, price_cents, stock, sku=None, status="active"):
    product = Product(sku=sku, name=name, price_cents=price_cents, stock=stock, status=status)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def tee(db_session):
    """$25.00 T-shirt, 10 in stock."""
    return make_product(db_session, name="Cotton T-Shirt", sku="TEE-001", price_cents=2500, stock=10)


@pytest.fixture(scope='function')
def mug(db_session):
    """$12.99 mug, 5 in stock."""
    return make_product(db_session, name="Ceramic Mug", sku="MUG-001", price_cents=1299, stock=5)


def add_to_cart(session, product, quantity, *, user_id=None, session_id=None, price_cents=None):
    item = CartItem(
        user_id=user_id,
        session_id=session_id,
        product_id=product.id,
        quantity=quantity,
        price_cents=product.price_cents if price_cents is None else price_cents,
    )
    session.add(item)
    session.commit()
    return item


ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address_line_1": "12 Analytical Way",
    "city": "London",
    "state": "Greater London",
    "postal_code": "N1 9GU",
    "country": "GB",
}


def make_request(items=(), **overrides):
    """CheckoutRequest with valid defaults; items are (product_id, quantity) pairs."""
    fields = {
        "email": "ada@example.com",
        "payment_method": "stripe",
        "billing_address": Address(**ADDRESS),
        "shipping_address": Address(**ADDRESS),
        "customer_id": 7,
        "items": tuple(RequestedLine(product_id=pid, quantity=qty) for pid, qty in items),
    }
    fields.update(overrides)
    return CheckoutRequest(**fields)


def checkout_payload(items=(), **overrides):
    """JSON body for POST /api/orders."""
    payload = {
        "email": "ada@example.com",
        "payment_method": "stripe",
        "billing_address": dict(ADDRESS),
        "shipping_address": dict(ADDRESS),
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
    }
    payload.update(overrides)
    return payload


def headers_for(role=None, user_id=None, session_id=None) -> dict:
    headers = {}
    if user_id is not None:
        headers["X-User-Id"] = str(user_id)
    if role is not None:
        headers["X-User-Role"] = role
    if session_id is not None:
        headers["X-Session-Id"] = session_id
    return headers
