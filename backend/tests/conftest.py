"""
Pytest fixtures for the back-office tests.

Provides test database setup, operators, catalog fixtures and test client.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Customer, User, Category
from backoffice.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from backoffice.services import products_service
from backoffice.services.auth_service import hash_password

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0,
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
    """Fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


def _make_user(db_session, username: str, role: str) -> User:
    user = User(
        username=username,
        email=f"{username}@pos.local",
        full_name=username.title(),
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager_user(db_session):
    return _make_user(db_session, "manager", ROLE_MANAGER)


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return _make_user(db_session, "cashier", ROLE_CASHIER)


@pytest.fixture(scope='function')
def category(db_session):
    cat = Category(name="Beverages")
    db_session.add(cat)
    db_session.commit()
    return cat


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Ana Torres", email="ana@example.com")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory creating products through the catalog service, so the initial
    stock has its ledger entry. Defaults: cost 70.00 at 30% -> sells at 100.00.
    """
    counter = {"n": 0}

    def _make(**overrides) -> int:
        counter["n"] += 1
        patch = {
            "name": f"Product {counter['n']}",
            "cost_price_cents": 7000,
            "profit_margin": 30,
            "stock": 10,
        }
        patch.update(overrides)
        return products_service.create_product(patch=patch)["id"]

    return _make


def get_auth_token(client, username: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, cashier_user.username))
