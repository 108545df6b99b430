from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from core import config as core_config
from services import email as email_module
from services.email import EmailResult
from models.user import User
from models.category import Category
from models.product import Product, ProductVariant, ProductImage
from security.password import hash_password
from security import jwt as jwt_utils


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    core_config.settings.JWT_SECRET = "test-secret"
    core_config.settings.REFRESH_SECRET = "test-refresh"
    core_config.settings.TESTING = True
    yield


@pytest.fixture()
def db():
    """Fresh in-memory database per test, shared with the app through get_db."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()

    def _get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield session
    finally:
        session.close()
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Capture outgoing e-mails instead of talking to SMTP or Celery."""
    sent = []

    def _fake_send(to_email: str, subject: str, html_body: str) -> EmailResult:
        sent.append({"to": to_email, "subject": subject, "body": html_body})
        return EmailResult("sent")

    monkeypatch.setattr(email_module.email_service, "send", _fake_send)
    return sent


def _make_user(db, email, first_name="Test", is_admin=False):
    user = User(
        first_name=first_name,
        last_name="User",
        email=email,
        password_hash=hash_password("testpass123"),
        is_admin=is_admin,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _headers(user):
    return {"Authorization": f"Bearer {jwt_utils.create_access_token(str(user.id))}"}


@pytest.fixture
def test_user(db):
    return _make_user(db, "test@example.com")


@pytest.fixture
def other_user(db):
    return _make_user(db, "other@example.com", first_name="Other")


@pytest.fixture
def admin_user(db):
    return _make_user(db, "admin@example.com", first_name="Admin", is_admin=True)


@pytest.fixture
def auth_headers(test_user):
    return _headers(test_user)


@pytest.fixture
def other_headers(other_user):
    return _headers(other_user)


@pytest.fixture
def admin_headers(admin_user):
    return _headers(admin_user)


@pytest.fixture
def category(db):
    cat = Category(name="Air Conditioners", slug="air-conditioners", is_active=True)
    db.add(cat)
    db.commit()
    return cat


@pytest.fixture
def product(db, category):
    """Split AC unit with a 9000 BTU variant (10 in stock) and a 12000 BTU variant (2 in stock)."""
    p = Product(
        category_id=category.id,
        sku="AC-SPLIT-01",
        name="Split Air Conditioner",
        slug="split-air-conditioner",
        brand="Daikin",
        base_price=Decimal("1000.00"),
        compare_at_price=Decimal("1200.00"),
        is_active=True,
    )
    p.variants.append(
        ProductVariant(sku="AC-SPLIT-01-9K", name="9000 BTU", price_adjustment=Decimal("0.00"), stock_quantity=10, sort_order=0)
    )
    p.variants.append(
        ProductVariant(sku="AC-SPLIT-01-12K", name="12000 BTU", price_adjustment=Decimal("150.00"), stock_quantity=2, sort_order=1)
    )
    p.images.append(ProductImage(url="https://img.example.com/ac.webp", is_primary=True))
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def small_variant(product):
    return product.variants[0]


@pytest.fixture
def large_variant(product):
    return product.variants[1]


@pytest.fixture
def heat_pump(db, category):
    p = Product(
        category_id=category.id,
        sku="HP-01",
        name="Heat Pump",
        slug="heat-pump",
        brand="Mitsubishi",
        base_price=Decimal("2500.00"),
        is_active=True,
    )
    p.variants.append(ProductVariant(sku="HP-01-STD", name="Standard", stock_quantity=5))
    db.add(p)
    db.commit()
    return p


def _address(**overrides):
    data = {
        "first_name": "Jana",
        "last_name": "Novak",
        "address_line1": "Main Street 1",
        "city": "Ljubljana",
        "postal_code": "1000",
        "country": "SI",
    }
    data.update(overrides)
    return data


def _order_payload(**overrides):
    data = {
        "customer_email": "Test@Example.com",
        "shipping_address": _address(),
        "payment_method": "card",
        "shipping_method": "standard",
    }
    data.update(overrides)
    return data


@pytest.fixture
def add_to_cart(client):
    def _add(headers, product_id, variant_id=None, quantity=1):
        resp = client.post(
            "/api/cart/items",
            json={"product_id": product_id, "variant_id": variant_id, "quantity": quantity},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _add


@pytest.fixture
def place_order(client, add_to_cart):
    def _place(headers, product_id, variant_id=None, quantity=1, **overrides):
        add_to_cart(headers, product_id, variant_id, quantity)
        resp = client.post("/api/orders", json=_order_payload(**overrides), headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _place


@pytest.fixture
def make_order_payload():
    return _order_payload


@pytest.fixture
def make_address():
    return _address
