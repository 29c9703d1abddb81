# Overview: Pytest coverage for reservation-aware availability.

from decimal import Decimal

import pytest

from pharmapos.errors import InsufficientStock
from pharmapos.models import Sale
from pharmapos.services import cash_service, inventory_service, reservation_service, sales_service


@pytest.fixture
def approved_hold(store_a, store_b, product, receive, seller_b_actor, pharmacist_a_actor):
    """Store A holds 10 units; store B has an APPROVED reservation for 4 of them."""
    receive(store_a, product, 10)
    reservation = reservation_service.request_reservation(
        seller_b_actor, source_store_id=store_a.id, items=[(product.id, 4)]
    )
    return reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)


class TestAvailableQuantity:

    def test_no_lots_means_zero(self, db_session, store_a, product):
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 0

    def test_sums_active_lots(self, db_session, store_a, product, receive):
        receive(store_a, product, 3, lot_number="L1")
        receive(store_a, product, 4, lot_number="L2")
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 7

    def test_approved_reservation_is_subtracted(self, db_session, store_a, product, approved_hold):
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 10
        assert inventory_service.get_reserved_quantity(store_a.id, product.id) == 4
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 6

    def test_requested_reservation_holds_nothing(self, db_session, store_a, product, receive, seller_b_actor):
        receive(store_a, product, 10)
        reservation_service.request_reservation(seller_b_actor, source_store_id=store_a.id, items=[(product.id, 4)])
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 10

    def test_never_negative(self, db_session, store_a, product, approved_hold, admin_actor):
        # Physical loss below the held quantity
        inventory_service.adjust_inventory(
            admin_actor, store_id=store_a.id, type="ADJUST_NEG", quantity=8, reason="Broken", product_id=product.id
        )
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 2
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 0

    def test_exclude_reservation(self, db_session, store_a, product, approved_hold):
        available = inventory_service.get_available_quantity(
            store_a.id, product.id, exclude_reservation_id=approved_hold.id
        )
        assert available == 10


class TestSaleAgainstReservedStock:

    def _open_cash(self, actor):
        cash_service.open_session(actor, initial_cash=Decimal("100.00"))

    def test_sale_of_seven_fails(self, db_session, store_a, product, approved_hold, seller_a_actor):
        sale = sales_service.create_sale(seller_a_actor)
        with pytest.raises(InsufficientStock) as exc_info:
            sales_service.add_item(seller_a_actor, sale.id, product_id=product.id, quantity=7)
        assert exc_info.value.available == 6
        assert exc_info.value.requested == 7

    def test_pay_of_seven_fails_even_if_line_predates_hold(
        self, db_session, store_a, store_b, product, receive, seller_a_actor, seller_b_actor, pharmacist_a_actor
    ):
        receive(store_a, product, 10)
        sale = sales_service.create_sale(seller_a_actor)
        sales_service.add_item(seller_a_actor, sale.id, product_id=product.id, quantity=7)

        reservation = reservation_service.request_reservation(
            seller_b_actor, source_store_id=store_a.id, items=[(product.id, 4)]
        )
        reservation_service.approve_reservation(pharmacist_a_actor, reservation.id)
        self._open_cash(seller_a_actor)

        with pytest.raises(InsufficientStock):
            sales_service.pay_sale(seller_a_actor, sale.id, method="CASH")

        assert db_session.get(Sale, sale.id).status == "DRAFT"
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 10

    def test_sale_of_six_succeeds(self, db_session, store_a, product, approved_hold, seller_a_actor):
        self._open_cash(seller_a_actor)
        sale = sales_service.create_sale(seller_a_actor)
        sales_service.add_item(seller_a_actor, sale.id, product_id=product.id, quantity=6)

        paid = sales_service.pay_sale(seller_a_actor, sale.id, method="CASH")

        assert paid.status == "PAID"
        assert inventory_service.get_total_lot_quantity(store_a.id, product.id) == 4
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 0

    def test_cancelled_reservation_releases_stock(
        self, db_session, store_a, product, approved_hold, seller_b_actor, seller_a_actor
    ):
        reservation_service.cancel_reservation(seller_b_actor, approved_hold.id)
        assert inventory_service.get_available_quantity(store_a.id, product.id) == 10

        sale = sales_service.create_sale(seller_a_actor)
        sales_service.add_item(seller_a_actor, sale.id, product_id=product.id, quantity=10)
