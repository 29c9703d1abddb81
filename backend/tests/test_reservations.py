# Overview: Pytest coverage for the cross-store reservation workflow.

"""
Reservation Workflow Tests

REQUESTED -> APPROVED -> FULFILLED
REQUESTED -> REJECTED
REQUESTED | APPROVED -> CANCELED

Approval is all-or-nothing across the reservation's lines.
"""

import pytest

from pharmapos.errors import Forbidden, InsufficientStock, InvalidStateTransition, ValidationError
from pharmapos.models import InventoryMovement, StockReservation, StoreNotification
from pharmapos.services import inventory_service, reservation_service, store_service


def _request(actor, source, lines):
    return reservation_service.request_reservation(actor, source_store_id=source.id, items=lines)


class TestRequest:

    def test_request_creates_requested_reservation(self, db_session, store_a, store_b, product, seller_b_actor):
        reservation = _request(seller_b_actor, store_a, [(product.id, 3)])

        assert reservation.status == "REQUESTED"
        assert reservation.request_store_id == store_b.id
        assert reservation.source_store_id == store_a.id
        assert [(i.product_id, i.quantity, i.reserved_qty) for i in reservation.items] == [(product.id, 3, 0)]

    def test_source_store_is_notified(self, db_session, store_a, product, seller_b_actor):
        reservation = _request(seller_b_actor, store_a, [(product.id, 3)])

        notes = db_session.query(StoreNotification).filter_by(store_id=store_a.id).all()
        assert [(n.kind, n.ref_id) for n in notes] == [("RESERVATION_REQUESTED", reservation.id)]

    def test_cannot_reserve_from_own_store(self, db_session, store_b, product, seller_b_actor):
        with pytest.raises(ValidationError):
            _request(seller_b_actor, store_b, [(product.id, 1)])

    def test_items_required(self, db_session, store_a, seller_b_actor):
        with pytest.raises(ValidationError):
            _request(seller_b_actor, store_a, [])

    def test_quantity_must_be_positive(self, db_session, store_a, product, seller_b_actor):
        with pytest.raises(ValidationError):
            _request(seller_b_actor, store_a, [(product.id, 0)])


class TestApprove:

    def test_approve_holds_quantities(self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 4)])

        approved = reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)

        assert approved.status == "APPROVED"
        assert approved.reviewed_by_id == pharmacist_a_actor.id
        assert [i.reserved_qty for i in approved.items] == [4]
        # No inventory moves on approval
        assert db_session.query(InventoryMovement).filter(InventoryMovement.type != "IN").count() == 0

    def test_approval_is_all_or_nothing(
        self, db_session, store_a, product, product_2, receive, seller_b_actor, pharmacist_a_actor
    ):
        """First line fits, second does not: nothing is reserved and status stays REQUESTED."""
        receive(store_a, product, 10)
        receive(store_a, product_2, 1)
        reservation = _request(seller_b_actor, store_a, [(product.id, 4), (product_2.id, 5)])

        with pytest.raises(InsufficientStock) as exc_info:
            reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)
        assert exc_info.value.product_id == product_2.id

        reloaded = db_session.get(StockReservation, reservation.id)
        assert reloaded.status == "REQUESTED"
        assert [i.reserved_qty for i in reloaded.items] == [0, 0]
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 10

    def test_duplicate_lines_are_checked_together(
        self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 5)
        reservation = _request(seller_b_actor, store_a, [(product.id, 3), (product.id, 3)])

        with pytest.raises(InsufficientStock):
            reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)

    def test_existing_holds_count_against_new_approval(
        self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 10)
        first = _request(seller_b_actor, store_a, [(product.id, 7)])
        reservation_service.approve_reservation(pharmacist_a_actor, first.id)
        second = _request(seller_b_actor, store_a, [(product.id, 4)])

        with pytest.raises(InsufficientStock):
            reservation_service.approve_reservation(pharmacist_a_actor, second.id)

    def test_only_source_store_may_approve(
        self, db_session, store_a, product, receive, seller_b_actor, pharmacist_b_actor
    ):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])

        with pytest.raises(Forbidden):
            reservation_service.approve_reservation(pharmacist_b_actor, reservation.id)

    def test_seller_cannot_approve(self, db_session, store_a, product, receive, seller_a_actor, seller_b_actor):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])

        with pytest.raises(Forbidden):
            reservation_service.approve_reservation(seller_a_actor, reservation.id)

    def test_approve_twice_is_invalid(self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])
        reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)

        with pytest.raises(InvalidStateTransition):
            reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)


class TestRejectCancelFulfill:

    def test_reject_requires_reason(self, db_session, store_a, product, seller_b_actor, pharmacist_a_actor):
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])

        with pytest.raises(ValidationError):
            reservation_service.reject_reservation(pharmacist_a_actor, reservation.id, "  ")

        rejected = reservation_service.reject_reservation(pharmacist_a_actor, reservation.id, "Out of season")
        assert rejected.status == "REJECTED"
        assert rejected.reject_reason == "Out of season"

    def test_rejected_cannot_be_approved(self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])
        reservation_service.reject_reservation(pharmacist_a_actor, reservation.id, "No")

        with pytest.raises(InvalidStateTransition):
            reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)

    def test_cancel_approved_releases_hold(
        self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 4)])
        reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)

        canceled = reservation_service.cancel_reservation(seller_b_actor, reservation.id, "Customer gave up")

        assert canceled.status == "CANCELED"
        assert [i.reserved_qty for i in canceled.items] == [0]
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 10

    def test_cancel_requested(self, db_session, store_a, product, seller_b_actor):
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])
        assert reservation_service.cancel_reservation(seller_b_actor, reservation.id).status == "CANCELED"

    def test_outsider_cannot_cancel(self, db_session, tenant, store_a, product, seller_b_actor, make_actor, pharmacist_a):
        store_c = store_service.create_store(tenant.id, "Bairro", "C")
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])

        with pytest.raises(Forbidden):
            reservation_service.cancel_reservation(make_actor(pharmacist_a, store_c), reservation.id)

    def test_fulfill_only_from_approved(self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 2)])

        with pytest.raises(InvalidStateTransition):
            reservation_service.fulfill_reservation(seller_b_actor, reservation.id)

        reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)
        fulfilled = reservation_service.fulfill_reservation(seller_b_actor, reservation.id)

        assert fulfilled.status == "FULFILLED"
        assert fulfilled.fulfilled_at is not None
        # Fulfilled reservations stop holding stock; no movement was written
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 10
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 10

    def test_only_requesting_store_fulfills(
        self, db_session, store_a, product, receive, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 10)
        reservation = _request(seller_b_actor, store_a, [(product.id, 2)])
        reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)

        with pytest.raises(Forbidden):
            reservation_service.fulfill_reservation(pharmacist_a_actor, reservation.id)

    def test_terminal_states_cannot_cancel(self, db_session, store_a, product, seller_b_actor, pharmacist_a_actor):
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])
        reservation_service.reject_reservation(pharmacist_a_actor, reservation.id, "No")

        with pytest.raises(InvalidStateTransition):
            reservation_service.cancel_reservation(seller_b_actor, reservation.id)


class TestVisibility:

    def test_both_stores_and_admin_can_read(
        self, db_session, store_a, product, seller_b_actor, pharmacist_a_actor, admin_actor
    ):
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])

        for actor in (seller_b_actor, pharmacist_a_actor, admin_actor):
            assert reservation_service.get_reservation_for(actor, reservation.id).id == reservation.id

    def test_uninvolved_store_cannot_read(self, db_session, tenant, store_a, product, seller_b_actor, pharmacist_a, make_actor):
        store_c = store_service.create_store(tenant.id, "Bairro", "C")
        reservation = _request(seller_b_actor, store_a, [(product.id, 1)])

        with pytest.raises(Forbidden):
            reservation_service.get_reservation_for(make_actor(pharmacist_a, store_c), reservation.id)
