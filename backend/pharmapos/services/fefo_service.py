# Overview: FEFO (first-expire-first-out) stock consumption engine.

"""
FEFO Consumption Engine.

Given a quantity to take out of a (store, product), consume active lots in
expiration order and write one movement per lot touched.

ORDER (deterministic, same snapshot -> same allocation):
1. expiration ascending, lots without expiration last
2. created_at ascending
3. id ascending

The caller is expected to hold the (store, product) stock lock and to have
checked reservation-aware availability; the engine still re-validates the
raw lot total and fails with InsufficientStock before mutating anything.
Nothing is committed here: the caller's transaction owns the commit.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from pharmapos.extensions import db
from pharmapos.errors import InsufficientStock, ValidationError
from pharmapos.models import InventoryLot, InventoryMovement
from pharmapos.models.inventory import MOVEMENT_SIGNS
from pharmapos.services.concurrency import lock_for_update


COST_PLACES = Decimal("0.0001")

CONSUMING_TYPES = frozenset(t for t, sign in MOVEMENT_SIGNS.items() if sign < 0)


@dataclass
class ConsumptionResult:
    product_id: int
    store_id: int
    quantity: int
    movements: list[InventoryMovement] = field(default_factory=list)
    total_cost: Decimal = Decimal("0")

    @property
    def weighted_cost(self) -> Decimal:
        """Average unit cost of what was taken (total_cost / quantity)."""
        if not self.quantity:
            return Decimal("0")
        return (self.total_cost / Decimal(self.quantity)).quantize(COST_PLACES, rounding=ROUND_HALF_UP)

    @property
    def lots(self) -> list[InventoryLot]:
        return [m.lot for m in self.movements]


def fefo_lots_query(store_id: int, product_id: int):
    """Active lots with stock for (store, product), in consumption order."""
    return (
        db.session.query(InventoryLot)
        .filter(
            InventoryLot.store_id == store_id,
            InventoryLot.product_id == product_id,
            InventoryLot.is_active.is_(True),
            InventoryLot.quantity > 0,
        )
        .order_by(
            InventoryLot.expiration.is_(None).asc(),
            InventoryLot.expiration.asc(),
            InventoryLot.created_at.asc(),
            InventoryLot.id.asc(),
        )
    )


def consume_fefo(
    store_id: int,
    product_id: int,
    quantity: int,
    movement_type: str,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
    sale_id: int | None = None,
    transfer_id: int | None = None,
) -> ConsumptionResult:
    """
    Take `quantity` units out of the store's lots, nearest expiration first.

    Returns a ConsumptionResult with the movements written (in consumption
    order) and the accumulated cost of the units taken.

    Raises:
        ValidationError: non-positive quantity or a non-consuming movement type
        InsufficientStock: the lots together hold less than `quantity`
    """
    if movement_type not in CONSUMING_TYPES:
        raise ValidationError(f"{movement_type} is not a consuming movement type")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    lots = lock_for_update(fefo_lots_query(store_id, product_id)).all()

    on_hand = sum(lot.quantity for lot in lots)
    if on_hand < quantity:
        raise InsufficientStock(
            product_id=product_id,
            store_id=store_id,
            available=on_hand,
            requested=quantity,
        )

    result = ConsumptionResult(product_id=product_id, store_id=store_id, quantity=quantity)
    remaining = quantity

    for lot in lots:
        if remaining <= 0:
            break
        take = min(lot.quantity, remaining)

        lot.quantity -= take
        if lot.quantity == 0:
            # Retired, kept for history
            lot.is_active = False

        movement = InventoryMovement(
            store_id=store_id,
            product_id=product_id,
            lot=lot,
            lot_id=lot.id,
            type=movement_type,
            quantity=take,
            reason=reason,
            sale_id=sale_id,
            transfer_id=transfer_id,
            created_by_id=actor_id,
        )
        db.session.add(movement)
        result.movements.append(movement)
        result.total_cost += Decimal(lot.cost_unit or 0) * take
        remaining -= take

    db.session.flush()
    return result
