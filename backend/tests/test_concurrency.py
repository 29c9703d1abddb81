# Overview: Pytest coverage for concurrent stock consumption.

"""
Concurrency Tests

Two workers race for the same (store, product) against a tight stock level.
Each worker runs in its own app context (own session, own connection) on a
file-backed SQLite database, so the stock lock is the only thing keeping
them apart.
"""

import threading
from decimal import Decimal

import pytest

from pharmapos import create_app
from pharmapos.config import TestConfig
from pharmapos.errors import InsufficientStock
from pharmapos.extensions import db
from pharmapos.locks import StockLockRegistry, StockLockTimeout
from pharmapos.models import InventoryLot, InventoryMovement
from pharmapos.permissions import Actor
from pharmapos.services import auth_service, catalog_service, inventory_service, store_service


@pytest.fixture
def threaded_app(tmp_path):
    class ThreadedConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'race.sqlite3'}"

    app = create_app(ThreadedConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def tight_stock(threaded_app):
    """One store, one product, one lot of 5 units. Returns (actor, store_id, product_id)."""
    tenant = store_service.create_tenant("Race", "RACE")
    store = store_service.create_store(tenant.id, "Only", "O", is_default=True)
    user = auth_service.create_user(tenant.id, name="Admin", email="admin@race.test", password="Password123", role="ADMIN")
    product = catalog_service.create_product(tenant.id, name="Paracetamol", price=Decimal("8.00"))
    actor = Actor(id=user.id, role=user.role, tenant_id=tenant.id, store_id=store.id)
    inventory_service.receive_lot(
        actor,
        store_id=store.id,
        product_id=product.id,
        lot_number="ONLY",
        expiration=None,
        cost_unit=Decimal("2.00"),
        quantity=5,
    )
    return actor, store.id, product.id


def test_two_workers_cannot_both_take_the_last_units(threaded_app, tight_stock):
    actor, store_id, product_id = tight_stock
    barrier = threading.Barrier(2)
    outcomes = []
    guard = threading.Lock()

    def worker():
        with threaded_app.app_context():
            barrier.wait()
            try:
                inventory_service.adjust_inventory(
                    actor,
                    store_id=store_id,
                    type="ADJUST_NEG",
                    quantity=4,
                    reason="Race",
                    product_id=product_id,
                )
                result = "ok"
            except InsufficientStock:
                result = "insufficient"
            with guard:
                outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == ["insufficient", "ok"]

    db.session.expire_all()
    lot = db.session.query(InventoryLot).filter_by(store_id=store_id, product_id=product_id).one()
    assert lot.quantity == 1
    negatives = db.session.query(InventoryMovement).filter_by(lot_id=lot.id, type="ADJUST_NEG").all()
    assert [m.quantity for m in negatives] == [4]
    assert inventory_service.get_movement_balance(lot.id) == 1


class TestStockLockRegistry:

    def test_lock_held_elsewhere_times_out(self):
        registry = StockLockRegistry(timeout=0.1)
        holding = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold([(1, 1)]):
                holding.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        holding.wait(5)
        try:
            with pytest.raises(StockLockTimeout):
                with registry.hold([(1, 1)]):
                    pass
        finally:
            release.set()
            t.join(5)

    def test_disjoint_keys_do_not_block(self):
        registry = StockLockRegistry(timeout=0.1)
        holding = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold([(1, 1)]):
                holding.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        holding.wait(5)
        try:
            with registry.hold([(1, 2), (2, 1)]):
                pass
        finally:
            release.set()
            t.join(5)

    def test_reentrant_for_the_same_thread(self):
        registry = StockLockRegistry(timeout=0.1)
        with registry.hold([(1, 1), (1, 1)]):
            with registry.hold([(1, 1)]):
                pass
