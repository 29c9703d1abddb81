# Overview: Pytest coverage for cash sessions.

from decimal import Decimal

import pytest

from pharmapos.errors import InvalidStateTransition, NoOpenCashSession, ValidationError
from pharmapos.services import cash_service, sales_service


def _paid_sale(actor, product, quantity, method):
    sale = sales_service.create_sale(actor)
    sales_service.add_item(actor, sale.id, product_id=product.id, quantity=quantity)
    return sales_service.pay_sale(actor, sale.id, method=method)


class TestSessionLifecycle:

    def test_one_open_session_per_store(self, db_session, store_a, seller_a_actor, cashier_a, make_actor):
        cash_service.open_session(seller_a_actor, initial_cash=Decimal("20.00"))

        with pytest.raises(ValidationError):
            cash_service.open_session(make_actor(cashier_a, store_a))

    def test_other_store_may_open_its_own(self, db_session, store_a, store_b, seller_a_actor, seller_b_actor):
        cash_service.open_session(seller_a_actor)
        session_b = cash_service.open_session(seller_b_actor)

        assert session_b.store_id == store_b.id

    def test_closed_session_cannot_close_again(self, db_session, store_a, seller_a_actor):
        session = cash_service.open_session(seller_a_actor)
        cash_service.close_session(seller_a_actor, session.id, counted_cash=Decimal("0"))

        with pytest.raises(InvalidStateTransition):
            cash_service.close_session(seller_a_actor, session.id, counted_cash=Decimal("0"))

    def test_movement_needs_open_session(self, db_session, store_a, seller_a_actor):
        with pytest.raises(NoOpenCashSession):
            cash_service.add_cash_movement(seller_a_actor, type="SUPPLY", amount=Decimal("10.00"))

    def test_withdrawal_requires_reason(self, db_session, store_a, seller_a_actor):
        cash_service.open_session(seller_a_actor)
        with pytest.raises(ValidationError):
            cash_service.add_cash_movement(seller_a_actor, type="WITHDRAWAL", amount=Decimal("10.00"))

    def test_receipt_is_not_manual(self, db_session, store_a, seller_a_actor):
        cash_service.open_session(seller_a_actor)
        with pytest.raises(ValidationError):
            cash_service.add_cash_movement(seller_a_actor, type="RECEIPT", amount=Decimal("10.00"))


class TestClosing:

    def test_expected_and_divergence(self, db_session, store_a, product, receive, seller_a_actor):
        """
        expected = 100 initial + 25 cash sale + 30 supply - 40 withdrawal = 115
        The PIX sale never reaches the drawer.
        """
        receive(store_a, product, 10)
        session = cash_service.open_session(seller_a_actor, initial_cash=Decimal("100.00"))
        _paid_sale(seller_a_actor, product, 2, "CASH")
        _paid_sale(seller_a_actor, product, 1, "PIX")
        cash_service.add_cash_movement(seller_a_actor, type="SUPPLY", amount=Decimal("30.00"))
        cash_service.add_cash_movement(seller_a_actor, type="WITHDRAWAL", amount=Decimal("40.00"), reason="Bank deposit")

        closed = cash_service.close_session(seller_a_actor, session.id, counted_cash=Decimal("112.00"))

        assert Decimal(closed.expected_cash) == Decimal("115.00")
        assert Decimal(closed.final_cash) == Decimal("112.00")
        assert Decimal(closed.divergence) == Decimal("-3.00")
        assert closed.closed_at is not None
        assert cash_service.get_open_session(store_a.id) is None

    def test_exact_count_has_no_divergence(self, db_session, store_a, seller_a_actor):
        session = cash_service.open_session(seller_a_actor, initial_cash=Decimal("10.00"))
        closed = cash_service.close_session(seller_a_actor, session.id, counted_cash=Decimal("10.00"))
        assert Decimal(closed.divergence) == Decimal("0")

    def test_sales_need_a_new_session_after_close(self, db_session, store_a, product, receive, seller_a_actor):
        receive(store_a, product, 10)
        session = cash_service.open_session(seller_a_actor)
        cash_service.close_session(seller_a_actor, session.id, counted_cash=Decimal("0"))

        with pytest.raises(NoOpenCashSession):
            _paid_sale(seller_a_actor, product, 1, "CASH")
