"""
Pytest fixtures for the back-office ledger tests.

Provides an in-memory application, per-test table wipe, test client,
actor header helpers and small data factories.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Customer, Supplier
from backoffice.services import catalog_service, stock_ledger_service


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "LOG_LEVEL": "WARNING",
}


def actor_headers(role: str = "admin", actor_id: int = 1) -> dict:
    """Headers an upstream gateway forwards for an authenticated user."""
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


@pytest.fixture(scope="session")
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope="function", autouse=True)
def db_session(app):
    """Fresh data for each test; schema is kept."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()
        db.session.remove()


@pytest.fixture
def admin_headers():
    return actor_headers("admin", 1)


@pytest.fixture
def manager_headers():
    return actor_headers("manager", 2)


@pytest.fixture
def cashier_headers():
    return actor_headers("cashier", 3)


@pytest.fixture
def make_product(db_session):
    """Create a product; opening stock goes through the ledger like any other."""
    counter = {"n": 0}

    def _make(
        *,
        name=None,
        price_cents=1000,
        cost_cents=600,
        stock=0,
        minimum_stock_level=10,
        active=True,
        sku=None,
    ):
        counter["n"] += 1
        product = catalog_service.create_product(patch={
            "sku": sku or f"TEST-{counter['n']:04d}",
            "name": name or f"Product {counter['n']}",
            "selling_price_cents": price_cents,
            "cost_price_cents": cost_cents,
            "minimum_stock_level": minimum_stock_level,
        })
        if stock:
            stock_ledger_service.stock_in(
                product_id=product.id,
                quantity=stock,
                note="Opening stock",
                actor_user_id=1,
            )
        if not active:
            catalog_service.deactivate_product(product.id)
        return product

    return _make


@pytest.fixture
def make_customer(db_session):
    counter = {"n": 0}

    def _make(*, first_name="Test", last_name=None, points=0):
        counter["n"] += 1
        customer = Customer(
            first_name=first_name,
            last_name=last_name or f"Customer{counter['n']}",
            email=f"customer{counter['n']}@example.com",
            loyalty_points=points,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture
def make_supplier(db_session):
    def _make(*, name="Acme Wholesale", active=True):
        supplier = Supplier(name=name, is_active=active)
        db_session.add(supplier)
        db_session.commit()
        return supplier

    return _make
