"""
Pytest fixtures for Warung Dashboard backend tests.

Provides the app on in-memory SQLite, clean tables per test, a small
sample catalog and an authenticated test client.
"""

from decimal import Decimal

import pytest
from warung import create_app
from warung.extensions import db
from warung.models import Category, Customer, Product, User
from warung.services.auth_service import hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_LOG_ROUNDS': 4,
        'BUSINESS_TIMEZONE': 'Asia/Jakarta',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    db.session.remove()
    # Clear all data but keep schema
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Mie Instan")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def indomie(db_session, category):
    """Indomie Goreng: stock 10, bought at 2800, sold at 3500."""
    product = Product(
        name="Indomie Goreng",
        category_id=category.id,
        stock=10,
        purchase_price=Decimal("2800"),
        selling_price=Decimal("3500"),
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def beras(db_session):
    """Beras 5kg: stock 3, bought at 62000, sold at 70000."""
    product = Product(
        name="Beras Ramos 5kg",
        stock=3,
        purchase_price=Decimal("62000"),
        selling_price=Decimal("70000"),
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Bu Siti", phone="081234567890")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def user(db_session):
    user = User(
        username="owner",
        email="owner@warung.local",
        password_hash=hash_password(PASSWORD),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def headers(client, user):
    token = get_auth_token(client, user.username, PASSWORD)
    assert token, "login failed in fixture"
    return auth_headers(token)


def get_auth_token(client, username: str, password: str) -> str:
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


def sale_payload(product, *, quantity=2, price=None, status="paid", paid=None, total=None, customer_id=None):
    """Build a create-sale body for one line."""
    price = Decimal(str(price if price is not None else product.selling_price))
    total = Decimal(str(total)) if total is not None else price * quantity
    if paid is None:
        paid = total if status == "paid" else Decimal("0")
    body = {
        "total_amount": str(total),
        "paid_amount": str(paid),
        "payment_status": status,
        "items": [{"product_id": product.id, "quantity": quantity, "price": str(price)}],
    }
    if customer_id is not None:
        body["customer_id"] = customer_id
    return body
