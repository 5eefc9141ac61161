"""Pytest fixtures for the storefront tests."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app import create_app
from storefront.config import AppConfig
from storefront.db.session import init_db, make_session_factory
from storefront.identity import AccountOwner, GuestOwner
from storefront.models import Product
from storefront.services import (
    CartMergeService,
    CartService,
    CatalogService,
    OrderService,
    OrderStatusService,
    RegionDirectory,
)


PRODUCTS = [
    # id, name, price, sale_price, stock, status
    ("p-shirt", "Kitenge Shirt", "10.00", None, 5, "active"),
    ("p-cap", "Canvas Cap", "7.50", None, 3, "active"),
    ("p-bag", "Woven Bag", "40.00", "32.00", 10, "active"),
    ("p-old", "Retired Sandal", "12.00", None, 8, "archived"),
]


class FakeClock:
    """Settable clock shared by every service under test."""

    def __init__(self, start=datetime(2026, 3, 2, 9, 30, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, kind, recipient, payload):
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append((kind, recipient, payload))


def seed_products(session_factory, rows=PRODUCTS):
    with session_factory() as session:
        for pid, name, price, sale, stock, status in rows:
            session.add(
                Product(
                    id=pid,
                    name=name,
                    price=Decimal(price),
                    sale_price=Decimal(sale) if sale else None,
                    currency="TZS",
                    stock=stock,
                    status=status,
                )
            )


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'store.db'}"


@pytest.fixture
def db(db_url):
    """Fresh file-backed database with the catalog seeded."""
    engine, session_factory = make_session_factory(db_url)
    init_db(engine)
    seed_products(session_factory)
    yield session_factory
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def carts(db, clock):
    return CartService(db, CatalogService(db), ttl_days=30, clock=clock)


@pytest.fixture
def merger(db, clock):
    return CartMergeService(db, ttl_days=30, clock=clock)


@pytest.fixture
def orders(db, carts, notifier, clock):
    return OrderService(db, cart_service=carts, notifier=notifier, regions=RegionDirectory(), clock=clock)


@pytest.fixture
def statuses(db, notifier, clock):
    return OrderStatusService(db, notifier=notifier, clock=clock)


@pytest.fixture
def guest():
    return GuestOwner("guest-token-1")


@pytest.fixture
def account():
    return AccountOwner("acct-42")


def make_checkout(subtotal, total, *, shipping="0", tax="0", discount="0", lines=None, **sections):
    """Build a checkout body in the storefront client's camelCase shape."""
    body = {
        "contact": {"phone": "+255712345678", "email": "asha@example.com", "region": "Dar es Salaam"},
        "delivery": {"method": "direct_delivery"},
        "address": {"fullName": "Asha Mollel", "address": "Plot 12, Msasani Road", "city": "Dar es Salaam"},
        "payment": {"method": "cash_delivery"},
        "pricing": {
            "subtotal": subtotal,
            "shipping": shipping,
            "tax": tax,
            "discount": discount,
            "total": total,
        },
    }
    if lines is not None:
        body["cartItems"] = lines
    for name, value in sections.items():
        body[name] = value
    return body


@pytest.fixture
def checkout():
    return make_checkout


@pytest.fixture
def app(db_url, clock, notifier):
    config = AppConfig(
        database_url=db_url,
        secret_key="test-secret",
        log_level="WARNING",
        store_base_url="http://localhost",
        currency="TZS",
    )
    flask_app = create_app(config, notifier=notifier, clock=clock)
    flask_app.config["TESTING"] = True
    _, session_factory = make_session_factory(db_url)
    seed_products(session_factory)
    yield flask_app
    flask_app.extensions["storefront_components"]["engine"].dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post("/admin/login", json={"username": "admin", "password": "storefront"})
    assert response.status_code == 200
    return client
