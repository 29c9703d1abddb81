# Overview: Pytest coverage for the lot / movement-log invariant.

"""
Ledger Invariant Tests

For every lot: SUM(sign(type) * movement.quantity) == lot.quantity, and
lot.quantity never goes below zero.
"""

from datetime import date
from decimal import Decimal

import pytest

from pharmapos.errors import Forbidden, InsufficientStock, LedgerInvariantError, ValidationError
from pharmapos.models import AuditEvent, InventoryLot, InventoryMovement
from pharmapos.services import cash_service, inventory_service, sales_service, transfer_service


def _assert_all_balanced(db_session):
    for lot in db_session.query(InventoryLot).all():
        assert lot.quantity >= 0
        assert inventory_service.get_movement_balance(lot.id) == lot.quantity, lot.lot_number


class TestInvariantHolds:

    def test_after_every_workflow(
        self, db_session, store_a, store_b, product, receive, admin_actor,
        seller_a_actor, seller_b_actor, pharmacist_a_actor, pharmacist_b_actor,
    ):
        receive(store_a, product, 6, lot_number="A", expiration=date(2029, 5, 1))
        receive(store_a, product, 6, lot_number="B", expiration=date(2030, 5, 1))
        inventory_service.adjust_inventory(
            admin_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=1, reason="Expired", product_id=product.id
        )

        cash_service.open_session(seller_a_actor)
        sale = sales_service.create_sale(seller_a_actor)
        sales_service.add_item(seller_a_actor, sale.id, product_id=product.id, quantity=6)
        sales_service.pay_sale(seller_a_actor, sale.id, method="CASH")

        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])
        transfer_service.send_transfer(pharmacist_a_actor, transfer.id)
        transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)

        _assert_all_balanced(db_session)
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 2
        assert inventory_service.get_total_lot_quantity(store_b.id, product.id) == 3

    def test_receiving_into_an_existing_lot_increments_it(self, db_session, store_a, product, receive):
        first = receive(store_a, product, 3, lot_number="X", expiration=date(2030, 1, 1))
        again = receive(store_a, product, 4, lot_number="X", expiration=date(2030, 1, 1))

        assert again.id == first.id
        assert again.quantity == 7
        _assert_all_balanced(db_session)

    def test_undated_receipts_share_one_lot(self, db_session, store_a, product, receive):
        first = receive(store_a, product, 3, lot_number="BULK", expiration=None)
        again = receive(store_a, product, 2, lot_number="BULK", expiration=None)

        assert again.id == first.id
        assert db_session.query(InventoryLot).filter_by(lot_number="BULK").count() == 1

    def test_empty_lot_is_retired_then_reactivated(self, db_session, store_a, product, receive, admin_actor):
        lot = receive(store_a, product, 2, lot_number="R")
        inventory_service.adjust_inventory(
            admin_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=2, reason="Loss", lot_id=lot.id
        )
        assert db_session.get(InventoryLot, lot.id).is_active is False

        reactivated = receive(store_a, product, 5, lot_number="R")
        assert reactivated.id == lot.id
        assert reactivated.is_active is True
        _assert_all_balanced(db_session)


class TestAdjustments:

    def test_negative_lot_adjustment_cannot_go_below_zero(self, db_session, store_a, product, receive, admin_actor):
        lot = receive(store_a, product, 2)

        with pytest.raises(InsufficientStock):
            inventory_service.adjust_inventory(
                admin_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=3, reason="Loss", lot_id=lot.id
            )
        assert db_session.get(InventoryLot, lot.id).quantity == 2

    def test_positive_adjustment_needs_a_lot(self, db_session, store_a, product, admin_actor):
        with pytest.raises(ValidationError):
            inventory_service.adjust_inventory(
                admin_actor, store_id=store_a.id, type="ADJUST_POS", quantity=1, reason="Found", product_id=product.id
            )

    def test_seller_cannot_adjust(self, db_session, store_a, product, receive, seller_a_actor):
        receive(store_a, product, 2)
        with pytest.raises(Forbidden):
            inventory_service.adjust_inventory(
                seller_a_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=1, reason="x", product_id=product.id
            )

    def test_pharmacist_cannot_correct_another_stores_lot(
        self, db_session, store_a, product, receive, pharmacist_b_actor
    ):
        lot = receive(store_a, product, 5)

        with pytest.raises(Forbidden):
            inventory_service.correct_lot(pharmacist_b_actor, lot.id, reason="Recount", quantity=0)

        assert db_session.get(InventoryLot, lot.id).quantity == 5
        _assert_all_balanced(db_session)

    def test_pharmacist_cannot_adjust_another_store(
        self, db_session, store_a, product, receive, pharmacist_b_actor
    ):
        receive(store_a, product, 5)

        with pytest.raises(Forbidden):
            inventory_service.adjust_inventory(
                pharmacist_b_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=1, reason="x", product_id=product.id
            )
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 5

    def test_admin_may_correct_any_store(self, db_session, store_b, product, receive, admin_actor):
        lot = receive(store_b, product, 5)

        corrected = inventory_service.correct_lot(admin_actor, lot.id, reason="Recount", quantity=4)

        assert corrected.quantity == 4

    def test_adjustment_is_audited(self, db_session, store_a, product, receive, admin_actor):
        receive(store_a, product, 2)
        inventory_service.adjust_inventory(
            admin_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=1, reason="Broken", product_id=product.id
        )
        events = db_session.query(AuditEvent).filter_by(event_type="inventory.adjusted").all()
        assert [(e.entity_id, e.note) for e in events] == [(product.id, "Broken")]

    def test_correct_lot_records_the_difference(self, db_session, store_a, product, receive, pharmacist_a_actor):
        lot = receive(store_a, product, 5, cost_unit=Decimal("3.00"))

        corrected = inventory_service.correct_lot(
            pharmacist_a_actor, lot.id, quantity=8, cost_unit=Decimal("3.50"), reason="Recount"
        )

        assert corrected.quantity == 8
        assert Decimal(corrected.cost_unit) == Decimal("3.50")
        last = (
            db_session.query(InventoryMovement)
            .filter_by(lot_id=lot.id)
            .order_by(InventoryMovement.id.desc())
            .first()
        )
        assert (last.type, last.quantity) == ("ADJUST_POS", 3)
        _assert_all_balanced(db_session)


class TestInvariantCheck:

    def test_tampered_lot_is_detected(self, db_session, store_a, product, receive):
        lot = receive(store_a, product, 5)
        lot.quantity = 9

        with pytest.raises(LedgerInvariantError) as exc_info:
            inventory_service.assert_lots_balanced([lot])
        db_session.rollback()

        assert exc_info.value.details["movementBalance"] == 5
