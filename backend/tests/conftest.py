"""
Pytest fixtures for pharmapos backend tests.

Provides test database setup, a two-store tenant with one user per role,
products, stock helpers and an authenticated test client.
"""

from datetime import date
from decimal import Decimal

import pytest

from pharmapos import create_app
from pharmapos.config import TestConfig
from pharmapos.extensions import db
from pharmapos.permissions import Actor
from pharmapos.services import (
    auth_service,
    catalog_service,
    inventory_service,
    session_service,
    store_service,
)


PASSWORD = "Password123"


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
    """Fresh data for each test."""
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
def tenant(db_session):
    return store_service.create_tenant("Farmacia Central", "CENTRAL")


@pytest.fixture(scope='function')
def other_tenant(db_session):
    return store_service.create_tenant("Drogaria Beta", "BETA")


@pytest.fixture(scope='function')
def store_a(tenant):
    """Origin / source store."""
    return store_service.create_store(tenant.id, "Matriz", "A", is_default=True)


@pytest.fixture(scope='function')
def store_b(tenant):
    """Destination / requesting store."""
    return store_service.create_store(tenant.id, "Filial", "B")


def _make_user(tenant, store, role, email):
    user = auth_service.create_user(tenant.id, name=email.split("@")[0], email=email, password=PASSWORD, role=role)
    if store is not None:
        store_service.assign_user_to_store(user.id, store.id, is_default=True)
    return user


@pytest.fixture(scope='function')
def admin(tenant, store_a, store_b):
    """Tenant admin without store links: reaches every store."""
    return _make_user(tenant, None, "ADMIN", "admin@central.test")


@pytest.fixture(scope='function')
def pharmacist_a(tenant, store_a):
    return _make_user(tenant, store_a, "PHARMACIST", "pharma.a@central.test")


@pytest.fixture(scope='function')
def pharmacist_b(tenant, store_b):
    return _make_user(tenant, store_b, "PHARMACIST", "pharma.b@central.test")


@pytest.fixture(scope='function')
def seller_a(tenant, store_a):
    return _make_user(tenant, store_a, "SELLER", "seller.a@central.test")


@pytest.fixture(scope='function')
def seller_b(tenant, store_b):
    return _make_user(tenant, store_b, "SELLER", "seller.b@central.test")


@pytest.fixture(scope='function')
def cashier_a(tenant, store_a):
    return _make_user(tenant, store_a, "CASHIER", "cashier.a@central.test")


def actor_for(user, store):
    return Actor(id=user.id, role=user.role, tenant_id=user.tenant_id, store_id=store.id if store else None)


@pytest.fixture(scope='function')
def admin_actor(admin, store_a):
    return actor_for(admin, store_a)


@pytest.fixture(scope='function')
def pharmacist_a_actor(pharmacist_a, store_a):
    return actor_for(pharmacist_a, store_a)


@pytest.fixture(scope='function')
def pharmacist_b_actor(pharmacist_b, store_b):
    return actor_for(pharmacist_b, store_b)


@pytest.fixture(scope='function')
def seller_a_actor(seller_a, store_a):
    return actor_for(seller_a, store_a)


@pytest.fixture(scope='function')
def seller_b_actor(seller_b, store_b):
    return actor_for(seller_b, store_b)


@pytest.fixture(scope='function')
def product(tenant):
    return catalog_service.create_product(tenant.id, name="Dipirona 500mg", price=Decimal("12.50"), ean="7891000000011")


@pytest.fixture(scope='function')
def product_2(tenant):
    return catalog_service.create_product(tenant.id, name="Amoxicilina 500mg", price=Decimal("30.00"), ean="7891000000028")


@pytest.fixture(scope='function')
def receive(admin, tenant):
    """
    Receive stock as the tenant admin.

    receive(store, product, quantity, lot_number="L1", expiration=date, cost_unit=Decimal)
    """
    def _receive(store, product, quantity, lot_number="L1", expiration=date(2030, 1, 31), cost_unit=Decimal("5.00")):
        return inventory_service.receive_lot(
            actor_for(admin, store),
            store_id=store.id,
            product_id=product.id,
            lot_number=lot_number,
            expiration=expiration,
            cost_unit=Decimal(cost_unit),
            quantity=quantity,
        )
    return _receive


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """auth_headers(user, store=None) -> headers carrying a fresh bearer token."""
    def _headers(user, store=None):
        _, token = session_service.create_session(user)
        headers = {"Authorization": f"Bearer {token}"}
        if store is not None:
            headers["X-Store-Id"] = str(store.id)
        return headers
    return _headers


@pytest.fixture(scope='function')
def make_actor():
    """make_actor(user, store) -> Actor acting from that store."""
    return actor_for
