# Overview: Pytest coverage for inter-store transfers.

"""
Transfer Workflow Tests

DRAFT -> SENT -> RECEIVED, DRAFT -> CANCELED.

- Send consumes FEFO at the origin with TRANSFER_OUT movements
- Receive upserts destination lots by (lot number, expiration) at origin cost
- A second receive is rejected and never double-credits
"""

from datetime import date
from decimal import Decimal

import pytest

from pharmapos.errors import (
    Forbidden,
    InsufficientStock,
    InvalidStateTransition,
    NoShipmentMovements,
    NotFound,
    ValidationError,
)
from pharmapos.models import InventoryLot, InventoryMovement, StockTransfer
from pharmapos.services import inventory_service, reservation_service, store_service, transfer_service


EXPIRATION = date(2030, 3, 31)


def _lot(db_session, store, product, lot_number="L1"):
    return db_session.query(InventoryLot).filter_by(
        store_id=store.id, product_id=product.id, lot_number=lot_number
    ).first()


@pytest.fixture
def origin_stock(store_a, product, receive):
    return receive(store_a, product, 10, lot_number="L1", expiration=EXPIRATION, cost_unit=Decimal("10.00"))


class TestCreate:

    def test_create_draft_into_current_store(self, db_session, store_a, store_b, product, seller_b_actor):
        transfer = transfer_service.create_transfer(
            seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 2), (product.id, 1)]
        )

        assert transfer.status == "DRAFT"
        assert transfer.origin_store_id == store_a.id
        assert transfer.destination_store_id == store_b.id
        # Duplicate product lines are merged
        assert [(i.product_id, i.quantity) for i in transfer.items] == [(product.id, 3)]

    def test_same_store_rejected(self, db_session, store_b, product, seller_b_actor):
        with pytest.raises(ValidationError):
            transfer_service.create_transfer(seller_b_actor, origin_store_id=store_b.id, items=[(product.id, 1)])

    def test_other_tenant_store_not_found(self, db_session, other_tenant, product, seller_b_actor):
        foreign = store_service.create_store(other_tenant.id, "Foreign", "F")

        with pytest.raises(NotFound):
            transfer_service.create_transfer(seller_b_actor, origin_store_id=foreign.id, items=[(product.id, 1)])


class TestRoundTrip:

    def test_send_and_receive(
        self, db_session, store_a, store_b, product, origin_stock, seller_b_actor, pharmacist_a_actor, pharmacist_b_actor
    ):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])

        sent = transfer_service.send_transfer(pharmacist_a_actor, transfer.id)
        assert sent.status == "SENT"
        assert [i.quantity_sent for i in sent.items] == [3]
        assert _lot(db_session, store_a, product).quantity == 7

        out = db_session.query(InventoryMovement).filter_by(transfer_id=transfer.id, type="TRANSFER_OUT").all()
        assert [(m.store_id, m.quantity) for m in out] == [(store_a.id, 3)]

        received = transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)
        assert received.status == "RECEIVED"

        dest = _lot(db_session, store_b, product)
        assert dest.quantity == 3
        assert dest.expiration == EXPIRATION
        assert Decimal(dest.cost_unit) == Decimal("10.00")

        incoming = db_session.query(InventoryMovement).filter_by(transfer_id=transfer.id, type="TRANSFER_IN").all()
        assert [(m.store_id, m.lot_id, m.quantity) for m in incoming] == [(store_b.id, dest.id, 3)]

    def test_receive_increments_existing_destination_lot(
        self, db_session, store_a, store_b, product, origin_stock, receive,
        seller_b_actor, pharmacist_a_actor, pharmacist_b_actor,
    ):
        existing = receive(store_b, product, 2, lot_number="L1", expiration=EXPIRATION, cost_unit=Decimal("9.00"))
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])
        transfer_service.send_transfer(pharmacist_a_actor, transfer.id)
        transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)

        dest = db_session.get(InventoryLot, existing.id)
        assert dest.quantity == 5
        # Origin cost overwrites the destination lot cost
        assert Decimal(dest.cost_unit) == Decimal("10.00")
        assert db_session.query(InventoryLot).filter_by(store_id=store_b.id, product_id=product.id).count() == 1

    def test_send_spanning_lots_creates_one_destination_lot_each(
        self, db_session, store_a, store_b, product, receive, seller_b_actor, pharmacist_a_actor, pharmacist_b_actor
    ):
        receive(store_a, product, 2, lot_number="EARLY", expiration=date(2029, 1, 1), cost_unit=Decimal("4.00"))
        receive(store_a, product, 5, lot_number="LATE", expiration=date(2031, 1, 1), cost_unit=Decimal("6.00"))
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 4)])
        transfer_service.send_transfer(pharmacist_a_actor, transfer.id)
        transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)

        early = _lot(db_session, store_b, product, "EARLY")
        late = _lot(db_session, store_b, product, "LATE")
        assert (early.quantity, Decimal(early.cost_unit)) == (2, Decimal("4.00"))
        assert (late.quantity, Decimal(late.cost_unit)) == (2, Decimal("6.00"))

    def test_second_receive_is_rejected_without_double_credit(
        self, db_session, store_a, store_b, product, origin_stock, seller_b_actor, pharmacist_a_actor, pharmacist_b_actor
    ):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])
        transfer_service.send_transfer(pharmacist_a_actor, transfer.id)
        transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)

        assert _lot(db_session, store_b, product).quantity == 3
        assert db_session.query(InventoryMovement).filter_by(transfer_id=transfer.id, type="TRANSFER_IN").count() == 1


class TestSend:

    def test_partial_send(
        self, db_session, store_a, product, product_2, receive, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 10)
        receive(store_a, product_2, 10)
        transfer = transfer_service.create_transfer(
            seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 5), (product_2.id, 4)]
        )

        sent = transfer_service.send_transfer(pharmacist_a_actor, transfer.id, [(product.id, 2), (product_2.id, 0)])

        assert {i.product_id: i.quantity_sent for i in sent.items} == {product.id: 2, product_2.id: 0}
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 8
        assert inventory_service.get_total_lot_quantity(store_a.id, product_2.id) == 10

    def test_partial_send_cannot_exceed_request(self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_a_actor):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])

        with pytest.raises(ValidationError):
            transfer_service.send_transfer(pharmacist_a_actor, transfer.id, [(product.id, 4)])
        assert db_session.get(StockTransfer, transfer.id).status == "DRAFT"

    def test_partial_send_of_nothing_rejected(self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_a_actor):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])

        with pytest.raises(ValidationError):
            transfer_service.send_transfer(pharmacist_a_actor, transfer.id, [(product.id, 0)])

    def test_shortfall_on_any_line_ships_nothing(
        self, db_session, store_a, product, product_2, receive, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 10)
        receive(store_a, product_2, 1)
        transfer = transfer_service.create_transfer(
            seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 5), (product_2.id, 2)]
        )

        with pytest.raises(InsufficientStock):
            transfer_service.send_transfer(pharmacist_a_actor, transfer.id)

        assert db_session.get(StockTransfer, transfer.id).status == "DRAFT"
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 10
        assert db_session.query(InventoryMovement).filter_by(transfer_id=transfer.id).count() == 0

    def test_reserved_stock_cannot_be_shipped(
        self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_a_actor
    ):
        reservation = reservation_service.request_reservation(
            seller_b_actor, source_store_id=store_a.id, items=[(product.id, 8)]
        )
        reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 3)])

        with pytest.raises(InsufficientStock):
            transfer_service.send_transfer(pharmacist_a_actor, transfer.id)

    def test_only_origin_pharmacist_sends(
        self, db_session, store_a, product, origin_stock, seller_a_actor, seller_b_actor, pharmacist_b_actor
    ):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])

        with pytest.raises(Forbidden):
            transfer_service.send_transfer(seller_a_actor, transfer.id)
        with pytest.raises(Forbidden):
            transfer_service.send_transfer(pharmacist_b_actor, transfer.id)

    def test_only_destination_receives(
        self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_a_actor
    ):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])
        transfer_service.send_transfer(pharmacist_a_actor, transfer.id)

        with pytest.raises(Forbidden):
            transfer_service.receive_transfer(pharmacist_a_actor, transfer.id)

    def test_receive_of_draft_is_invalid(self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_b_actor):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])

        with pytest.raises(InvalidStateTransition):
            transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)

    def test_sent_without_movements_raises(
        self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_b_actor
    ):
        """A SENT transfer with no TRANSFER_OUT movements cannot be received."""
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])
        db_session.get(StockTransfer, transfer.id).status = "SENT"
        db_session.commit()

        with pytest.raises(NoShipmentMovements):
            transfer_service.receive_transfer(pharmacist_b_actor, transfer.id)


class TestCancel:

    def test_cancel_draft(self, db_session, store_a, product, seller_b_actor):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])
        canceled = transfer_service.cancel_transfer(seller_b_actor, transfer.id, "Not needed")
        assert canceled.status == "CANCELED"

    def test_sent_cannot_be_canceled(self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_a_actor):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])
        transfer_service.send_transfer(pharmacist_a_actor, transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.cancel_transfer(pharmacist_a_actor, transfer.id)

    def test_canceled_cannot_be_sent(self, db_session, store_a, product, origin_stock, seller_b_actor, pharmacist_a_actor):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])
        transfer_service.cancel_transfer(seller_b_actor, transfer.id)

        with pytest.raises(InvalidStateTransition):
            transfer_service.send_transfer(pharmacist_a_actor, transfer.id)


class TestVisibility:

    def test_both_stores_and_admin_can_read(
        self, db_session, store_a, product, seller_b_actor, pharmacist_a_actor, admin_actor
    ):
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])

        for actor in (seller_b_actor, pharmacist_a_actor, admin_actor):
            assert transfer_service.get_transfer_for(actor, transfer.id).id == transfer.id

    def test_uninvolved_store_cannot_read(self, db_session, tenant, store_a, product, seller_b_actor, pharmacist_a, make_actor):
        store_c = store_service.create_store(tenant.id, "Bairro", "C")
        transfer = transfer_service.create_transfer(seller_b_actor, origin_store_id=store_a.id, items=[(product.id, 1)])

        with pytest.raises(Forbidden):
            transfer_service.get_transfer_for(make_actor(pharmacist_a, store_c), transfer.id)
