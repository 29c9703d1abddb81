# Overview: Pytest coverage for the FEFO consumption engine.

"""
FEFO Consumption Engine Tests

- Nearest expiration first, undated lots last
- A shortfall fails before any lot is touched
- Weighted unit cost of what was taken
"""

from datetime import date
from decimal import Decimal

import pytest

from pharmapos.errors import InsufficientStock, ValidationError
from pharmapos.models import InventoryLot, InventoryMovement
from pharmapos.models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from pharmapos.services import fefo_service


class TestFefoOrdering:

    def test_consumes_earliest_expiration_first(self, db_session, store_a, product, receive):
        """7 units over Jan(5) + Feb(5): all of January, then 2 of February."""
        feb = receive(store_a, product, 5, lot_number="FEB", expiration=date(2025, 2, 1))
        jan = receive(store_a, product, 5, lot_number="JAN", expiration=date(2025, 1, 1))

        result = fefo_service.consume_fefo(store_a.id, product.id, 7, MOVEMENT_OUT)
        db_session.commit()

        assert [(m.lot_id, m.quantity) for m in result.movements] == [(jan.id, 5), (feb.id, 2)]
        assert all(m.type == MOVEMENT_OUT for m in result.movements)

        db_session.refresh(jan)
        db_session.refresh(feb)
        assert jan.quantity == 0
        assert jan.is_active is False
        assert feb.quantity == 3
        assert feb.is_active is True

    def test_lots_without_expiration_go_last(self, db_session, store_a, product, receive):
        undated = receive(store_a, product, 4, lot_number="NOEXP", expiration=None)
        dated = receive(store_a, product, 4, lot_number="DATED", expiration=date(2031, 6, 30))

        result = fefo_service.consume_fefo(store_a.id, product.id, 5, MOVEMENT_OUT)

        assert [m.lot_id for m in result.movements] == [dated.id, undated.id]
        assert [m.quantity for m in result.movements] == [4, 1]

    def test_same_expiration_breaks_ties_by_creation(self, db_session, store_a, product, receive):
        first = receive(store_a, product, 2, lot_number="A1", expiration=date(2030, 1, 1))
        second = receive(store_a, product, 2, lot_number="A2", expiration=date(2030, 1, 1))

        result = fefo_service.consume_fefo(store_a.id, product.id, 3, MOVEMENT_OUT)

        assert [m.lot_id for m in result.movements] == [first.id, second.id]

    def test_ignores_other_stores(self, db_session, store_a, store_b, product, receive):
        receive(store_b, product, 50, lot_number="B", expiration=date(2024, 1, 1))
        own = receive(store_a, product, 5, lot_number="A", expiration=date(2030, 1, 1))

        result = fefo_service.consume_fefo(store_a.id, product.id, 5, MOVEMENT_OUT)

        assert [m.lot_id for m in result.movements] == [own.id]


class TestFefoShortfall:

    def test_insufficient_stock_mutates_nothing(self, db_session, store_a, product, receive):
        jan = receive(store_a, product, 5, lot_number="JAN", expiration=date(2025, 1, 1))
        feb = receive(store_a, product, 5, lot_number="FEB", expiration=date(2025, 2, 1))
        movements_before = db_session.query(InventoryMovement).count()

        with pytest.raises(InsufficientStock) as exc_info:
            fefo_service.consume_fefo(store_a.id, product.id, 11, MOVEMENT_OUT)
        db_session.rollback()

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert exc_info.value.shortfall == 1

        assert db_session.get(InventoryLot, jan.id).quantity == 5
        assert db_session.get(InventoryLot, feb.id).quantity == 5
        assert db_session.query(InventoryMovement).count() == movements_before

    def test_rejects_non_consuming_type(self, db_session, store_a, product, receive):
        receive(store_a, product, 5)
        with pytest.raises(ValidationError):
            fefo_service.consume_fefo(store_a.id, product.id, 1, MOVEMENT_IN)

    def test_rejects_non_positive_quantity(self, db_session, store_a, product, receive):
        receive(store_a, product, 5)
        with pytest.raises(ValidationError):
            fefo_service.consume_fefo(store_a.id, product.id, 0, MOVEMENT_OUT)


class TestWeightedCost:

    def test_weighted_cost_across_two_lots(self, db_session, store_a, product, receive):
        """2 units at 5.00 + 2 units at 7.00 -> 6.00."""
        receive(store_a, product, 2, lot_number="C5", expiration=date(2030, 1, 1), cost_unit=Decimal("5.00"))
        receive(store_a, product, 10, lot_number="C7", expiration=date(2030, 6, 1), cost_unit=Decimal("7.00"))

        result = fefo_service.consume_fefo(store_a.id, product.id, 4, MOVEMENT_OUT)

        assert result.total_cost == Decimal("24.00")
        assert result.weighted_cost == Decimal("6.0000")

    def test_weighted_cost_rounds_to_four_places(self, db_session, store_a, product, receive):
        receive(store_a, product, 1, lot_number="X", expiration=date(2030, 1, 1), cost_unit=Decimal("1.00"))
        receive(store_a, product, 2, lot_number="Y", expiration=date(2030, 2, 1), cost_unit=Decimal("2.00"))

        result = fefo_service.consume_fefo(store_a.id, product.id, 3, MOVEMENT_OUT)

        assert result.weighted_cost == Decimal("1.6667")
