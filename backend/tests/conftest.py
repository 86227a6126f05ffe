"""
Pytest fixtures for DukaPOS backend tests.

Provides an in-memory database, store/user/product/customer factories and
authenticated request headers.
"""

import pytest

from dukapos import create_app
from dukapos.config import TestConfig
from dukapos.extensions import db
from dukapos.models import Category, Customer, Product, Store, User
from dukapos.services import session_service
from dukapos.services.auth_service import hash_password


TEST_PASSWORD = "Password123!"


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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Main Street Duka", code="MAIN")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Riverside Duka", code="RIVER")
    db_session.add(store)
    db_session.commit()
    return store


def _make_user(db_session, username, role, store_id):
    user = User(
        username=username,
        email=f"{username}@duka.local",
        # Low bcrypt cost keeps the suite fast
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role,
        store_id=store_id,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, store):
    return _make_user(db_session, "admin", "admin", store.id)


@pytest.fixture(scope='function')
def manager_user(db_session, store):
    return _make_user(db_session, "manager", "manager", store.id)


@pytest.fixture(scope='function')
def cashier_user(db_session, store):
    return _make_user(db_session, "cashier", "cashier", store.id)


@pytest.fixture(scope='function')
def org_admin(db_session):
    """Admin with no store of its own."""
    return _make_user(db_session, "orgadmin", "admin", None)


@pytest.fixture(scope='function')
def category(db_session, store):
    category = Category(store_id=store.id, name="Beverages")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(db_session, store):
    """
    Product factory. Defaults: 10 in stock, piece 80.00/100.00,
    pack 240.00/300.00 (pack of 3), dozen 900.00/1150.00.
    """
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "store_id": store.id,
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "quantity": 10,
            "min_quantity": 2,
            "piece_buying_price_cents": 8000,
            "piece_selling_price_cents": 10000,
            "pack_buying_price_cents": 24000,
            "pack_selling_price_cents": 30000,
            "dozen_buying_price_cents": 90000,
            "dozen_selling_price_cents": 115000,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def make_customer(db_session, store):
    counter = {"n": 0}

    def _make(tier="bronze", **overrides):
        counter["n"] += 1
        fields = {
            "store_id": store.id,
            "name": f"Customer {counter['n']}",
            "phone": f"07000000{counter['n']:02d}",
            "loyalty_tier": tier,
        }
        fields.update(overrides)
        customer = Customer(**fields)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def walk_in(make_customer):
    return make_customer(name="Walk-in Customer", is_walk_in=True)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    """Issue a session for user without going through /login."""
    _, token = session_service.create_session(user.id)
    return auth_headers(token)


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


@pytest.fixture(scope='function')
def issue_headers(db_session):
    """Fixture form of headers_for for tests that need several users."""
    return headers_for


@pytest.fixture(scope='function')
def login(client):
    """Log in through the API and return bearer headers (None on failure)."""
    def _login(username: str, password: str = TEST_PASSWORD):
        token = get_auth_token(client, username, password)
        return auth_headers(token) if token else None
    return _login
