# Overview: Service-layer operations for inventory; lots, movements, availability and valuation.

"""
Ledger Store and Availability Calculator.

AVAILABILITY:
    available(store, product) = max(0, active lot quantity - approved reserved quantity)

Only APPROVED reservations whose source is the store count as held stock.

INVARIANT (enforced, see assert_lots_balanced):
    for each lot: SUM(sign(type) * movement.quantity) == lot.quantity

Every mutating operation here runs through run_atomic() holding the
(store, product) stock lock, checks the invariant for each lot it touched
and commits once.
"""
from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, func

from pharmapos.extensions import db
from pharmapos.errors import (
    InsufficientStock,
    LedgerInvariantError,
    NotFound,
    ValidationError,
)
from pharmapos.models import (
    InventoryLot,
    InventoryMovement,
    Product,
    StockReservation,
    StockReservationItem,
)
from pharmapos.models.inventory import (
    MOVEMENT_ADJUST_NEG,
    MOVEMENT_ADJUST_POS,
    MOVEMENT_IN,
    MOVEMENT_SIGNS,
)
from pharmapos.permissions import Actor, assert_acting_for_store, assert_elevated
from pharmapos.services import fefo_service, store_service, catalog_service
from pharmapos.services.audit_service import append_audit_event
from pharmapos.services.concurrency import lock_for_update, run_atomic
from pharmapos.time_utils import utcnow


RESERVATION_STATUS_APPROVED = "APPROVED"

ADJUSTMENT_TYPES = (MOVEMENT_ADJUST_POS, MOVEMENT_ADJUST_NEG)

_POSITIVE_TYPES = [t for t, sign in MOVEMENT_SIGNS.items() if sign > 0]


# ---------------------------------------------------------------------------
# Availability Calculator
# ---------------------------------------------------------------------------

def get_total_lot_quantity(store_id: int, product_id: int) -> int:
    """Sum of active lot quantities for (store, product)."""
    total = (
        db.session.query(func.coalesce(func.sum(InventoryLot.quantity), 0))
        .filter(
            InventoryLot.store_id == store_id,
            InventoryLot.product_id == product_id,
            InventoryLot.is_active.is_(True),
            InventoryLot.quantity > 0,
        )
        .scalar()
    )
    return int(total or 0)


def get_reserved_quantity(store_id: int, product_id: int, *, exclude_reservation_id: int | None = None) -> int:
    """Quantity held by APPROVED reservations sourced from the store."""
    query = (
        db.session.query(func.coalesce(func.sum(StockReservationItem.reserved_qty), 0))
        .join(StockReservation, StockReservation.id == StockReservationItem.reservation_id)
        .filter(
            StockReservation.source_store_id == store_id,
            StockReservation.status == RESERVATION_STATUS_APPROVED,
            StockReservationItem.product_id == product_id,
        )
    )
    if exclude_reservation_id is not None:
        query = query.filter(StockReservation.id != exclude_reservation_id)
    return int(query.scalar() or 0)


def get_available_quantity(store_id: int, product_id: int, *, exclude_reservation_id: int | None = None) -> int:
    """Sellable quantity: lots minus approved reservations, never negative."""
    total = get_total_lot_quantity(store_id, product_id)
    reserved = get_reserved_quantity(store_id, product_id, exclude_reservation_id=exclude_reservation_id)
    return max(0, total - reserved)


def assert_available(store_id: int, product_id: int, requested: int, *, exclude_reservation_id: int | None = None) -> int:
    """Raise InsufficientStock unless `requested` units are available. Returns the available quantity."""
    available = get_available_quantity(store_id, product_id, exclude_reservation_id=exclude_reservation_id)
    if requested > available:
        raise InsufficientStock(
            product_id=product_id,
            store_id=store_id,
            available=available,
            requested=requested,
        )
    return available


# ---------------------------------------------------------------------------
# Invariant
# ---------------------------------------------------------------------------

def get_movement_balance(lot_id: int) -> int:
    signed = case(
        (InventoryMovement.type.in_(_POSITIVE_TYPES), InventoryMovement.quantity),
        else_=-InventoryMovement.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(InventoryMovement.lot_id == lot_id)
        .scalar()
    )
    return int(total or 0)


def assert_lots_balanced(lots) -> None:
    """
    Check the movement-sum invariant for every lot given.

    Must run inside the mutating transaction, before commit; pending
    changes are flushed first so the sums see them.
    """
    db.session.flush()
    for lot in {lot.id: lot for lot in lots}.values():
        balance = get_movement_balance(lot.id)
        if lot.quantity < 0 or balance != lot.quantity:
            current_app.logger.error(
                "ledger.invariant_violation lot=%s quantity=%s movements=%s", lot.id, lot.quantity, balance
            )
            raise LedgerInvariantError(
                f"Lot {lot.id} quantity {lot.quantity} does not match its movements ({balance})",
                details={"lotId": lot.id, "quantity": lot.quantity, "movementBalance": balance},
            )


# ---------------------------------------------------------------------------
# Lot upsert (receipts, transfer-in)
# ---------------------------------------------------------------------------

def credit_lot(
    *,
    store_id: int,
    product_id: int,
    lot_number: str,
    expiration,
    cost_unit: Decimal,
    quantity: int,
    movement_type: str,
    actor_id: int | None,
    reason: str | None = None,
    transfer_id: int | None = None,
) -> InventoryMovement:
    """
    Upsert the lot keyed by (store, product, lot_number, expiration) and add `quantity`.

    A retired lot is reactivated. The lot's unit cost is overwritten with
    `cost_unit`. No commit.
    """
    if MOVEMENT_SIGNS.get(movement_type, 0) <= 0:
        raise ValidationError(f"{movement_type} is not an incoming movement type")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")

    query = db.session.query(InventoryLot).filter_by(
        store_id=store_id,
        product_id=product_id,
        lot_number=lot_number,
    )
    # NULL never compares equal
    if expiration is None:
        query = query.filter(InventoryLot.expiration.is_(None))
    else:
        query = query.filter(InventoryLot.expiration == expiration)
    lot = lock_for_update(query).first()

    if lot is None:
        lot = InventoryLot(
            store_id=store_id,
            product_id=product_id,
            lot_number=lot_number,
            expiration=expiration,
            cost_unit=cost_unit,
            quantity=quantity,
            is_active=True,
        )
        db.session.add(lot)
        db.session.flush()
    else:
        lot.quantity += quantity
        lot.cost_unit = cost_unit
        lot.is_active = True

    movement = InventoryMovement(
        store_id=store_id,
        product_id=product_id,
        lot=lot,
        lot_id=lot.id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        transfer_id=transfer_id,
        created_by_id=actor_id,
    )
    db.session.add(movement)
    return movement


# ---------------------------------------------------------------------------
# Public ledger operations
# ---------------------------------------------------------------------------

def receive_lot(
    actor: Actor,
    *,
    store_id: int,
    product_id: int,
    lot_number: str,
    expiration,
    cost_unit: Decimal,
    quantity: int,
    reason: str | None = None,
) -> InventoryLot:
    """
    Receive stock from a supplier into a lot (IN movement).

    Returns the lot after the receipt.
    """
    assert_elevated(actor, "receive inventory")
    assert_acting_for_store(actor, store_id, "receive inventory")
    store_service.get_active_store(actor.tenant_id, store_id)
    catalog_service.get_product(actor.tenant_id, product_id)
    if not lot_number or not str(lot_number).strip():
        raise ValidationError("lotNumber is required")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")
    lot_number = str(lot_number).strip()

    def _op():
        movement = credit_lot(
            store_id=store_id,
            product_id=product_id,
            lot_number=lot_number,
            expiration=expiration,
            cost_unit=cost_unit,
            quantity=quantity,
            movement_type=MOVEMENT_IN,
            actor_id=actor.id,
            reason=reason or "Receipt",
        )
        assert_lots_balanced([movement.lot])
        return movement.lot

    lot = run_atomic(_op, stock_keys=[(store_id, product_id)])
    current_app.logger.info(
        "inventory.received store=%s product=%s lot=%s qty=%s", store_id, product_id, lot.id, quantity
    )
    return lot


def adjust_inventory(
    actor: Actor,
    *,
    store_id: int,
    type: str,
    quantity: int,
    reason: str,
    lot_id: int | None = None,
    product_id: int | None = None,
) -> list[InventoryMovement]:
    """
    Manual stock adjustment.

    - With lot_id: adjusts that lot. ADJUST_NEG cannot take it below 0.
    - Without lot_id: ADJUST_NEG consumes FEFO across the product's lots;
      ADJUST_POS requires a lot (use receive_lot for new stock).

    Physical losses are not limited by reservations: they reduce on-hand
    stock directly.
    """
    assert_elevated(actor, "adjust inventory")
    assert_acting_for_store(actor, store_id, "adjust inventory")
    store_service.get_store(actor.tenant_id, store_id)
    if type not in ADJUSTMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(ADJUSTMENT_TYPES)}")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive")
    if not reason or not reason.strip():
        raise ValidationError("reason is required for adjustments")

    if lot_id is not None:
        lot = db.session.query(InventoryLot).filter_by(id=lot_id, store_id=store_id).first()
        if not lot:
            raise NotFound(f"Lot {lot_id} not found")
        product_id = lot.product_id
    elif type == MOVEMENT_ADJUST_POS:
        raise ValidationError("lotId is required for positive adjustments")
    elif product_id is None:
        raise ValidationError("productId or lotId is required")
    else:
        catalog_service.get_product(actor.tenant_id, product_id)

    def _op():
        if lot_id is None:
            result = fefo_service.consume_fefo(
                store_id, product_id, quantity, MOVEMENT_ADJUST_NEG,
                actor_id=actor.id, reason=reason,
            )
            movements = result.movements
        else:
            locked = lock_for_update(db.session.query(InventoryLot).filter_by(id=lot_id)).first()
            if type == MOVEMENT_ADJUST_NEG:
                if locked.quantity < quantity:
                    raise InsufficientStock(
                        product_id=product_id,
                        store_id=store_id,
                        available=locked.quantity,
                        requested=quantity,
                        message=f"Lot {locked.id} holds {locked.quantity}, cannot remove {quantity}",
                    )
                locked.quantity -= quantity
                if locked.quantity == 0:
                    locked.is_active = False
            else:
                locked.quantity += quantity
                locked.is_active = True

            movements = [InventoryMovement(
                store_id=store_id,
                product_id=product_id,
                lot=locked,
                lot_id=locked.id,
                type=type,
                quantity=quantity,
                reason=reason,
                created_by_id=actor.id,
            )]
            db.session.add(movements[0])

        assert_lots_balanced([m.lot for m in movements])
        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=store_id,
            event_type="inventory.adjusted",
            entity_type="product",
            entity_id=product_id,
            actor_user_id=actor.id,
            note=reason,
            payload={"type": type, "quantity": quantity, "lotId": lot_id},
        )
        return movements

    movements = run_atomic(_op, stock_keys=[(store_id, product_id)])
    current_app.logger.info(
        "inventory.adjusted store=%s product=%s type=%s qty=%s", store_id, product_id, type, quantity
    )
    return movements


def correct_lot(
    actor: Actor,
    lot_id: int,
    *,
    reason: str,
    quantity: int | None = None,
    cost_unit: Decimal | None = None,
) -> InventoryLot:
    """
    Set a lot's absolute quantity and/or unit cost.

    A quantity change is recorded as ADJUST_POS / ADJUST_NEG for the
    difference so the movement log stays balanced.
    """
    assert_elevated(actor, "correct lots")
    if quantity is None and cost_unit is None:
        raise ValidationError("quantity or costUnit is required")
    if quantity is not None and quantity < 0:
        raise ValidationError("quantity must not be negative")
    if not reason or not reason.strip():
        raise ValidationError("reason is required for lot corrections")

    lot = (
        db.session.query(InventoryLot)
        .join(Product, Product.id == InventoryLot.product_id)
        .filter(InventoryLot.id == lot_id, Product.tenant_id == actor.tenant_id)
        .first()
    )
    if not lot:
        raise NotFound(f"Lot {lot_id} not found")
    assert_acting_for_store(actor, lot.store_id, "correct its lots")
    keys = [(lot.store_id, lot.product_id)]

    def _op():
        locked = lock_for_update(db.session.query(InventoryLot).filter_by(id=lot_id)).first()
        before = {"quantity": locked.quantity, "costUnit": float(locked.cost_unit)}

        if cost_unit is not None:
            locked.cost_unit = cost_unit

        if quantity is not None and quantity != locked.quantity:
            diff = quantity - locked.quantity
            db.session.add(InventoryMovement(
                store_id=locked.store_id,
                product_id=locked.product_id,
                lot=locked,
                lot_id=locked.id,
                type=MOVEMENT_ADJUST_POS if diff > 0 else MOVEMENT_ADJUST_NEG,
                quantity=abs(diff),
                reason=reason,
                created_by_id=actor.id,
            ))
            locked.quantity = quantity
            locked.is_active = quantity > 0

        assert_lots_balanced([locked])
        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=locked.store_id,
            event_type="inventory.lot_corrected",
            entity_type="lot",
            entity_id=locked.id,
            actor_user_id=actor.id,
            note=reason,
            payload={"before": before, "after": {"quantity": locked.quantity, "costUnit": float(locked.cost_unit)}},
        )
        return locked

    return run_atomic(_op, stock_keys=keys)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def list_lots(
    tenant_id: int,
    store_id: int,
    *,
    product_id: int | None = None,
    expiring_within_days: int | None = None,
    search: str | None = None,
    include_empty: bool = False,
) -> list[InventoryLot]:
    """Lots of a store in FEFO order."""
    store_service.get_store(tenant_id, store_id)
    query = (
        db.session.query(InventoryLot)
        .join(Product, Product.id == InventoryLot.product_id)
        .filter(InventoryLot.store_id == store_id, Product.tenant_id == tenant_id)
    )
    if not include_empty:
        query = query.filter(InventoryLot.is_active.is_(True), InventoryLot.quantity > 0)
    if product_id is not None:
        query = query.filter(InventoryLot.product_id == product_id)
    if expiring_within_days is not None:
        limit_date = (utcnow() + timedelta(days=expiring_within_days)).date()
        query = query.filter(InventoryLot.expiration.isnot(None), InventoryLot.expiration <= limit_date)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Product.name.ilike(like), InventoryLot.lot_number.ilike(like)))
    return query.order_by(
        InventoryLot.expiration.is_(None).asc(),
        InventoryLot.expiration.asc(),
        InventoryLot.created_at.asc(),
        InventoryLot.id.asc(),
    ).all()


def list_movements(tenant_id: int, store_id: int, product_id: int, *, limit: int = 100) -> list[InventoryMovement]:
    """Movement log of a product in a store, newest first."""
    store_service.get_store(tenant_id, store_id)
    catalog_service.get_product(tenant_id, product_id)
    return (
        db.session.query(InventoryMovement)
        .filter_by(store_id=store_id, product_id=product_id)
        .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(max(1, min(limit, 500)))
        .all()
    )


def stock_overview(tenant_id: int, store_id: int) -> list[dict]:
    """Per product with stock in the store: total, reserved and available."""
    store_service.get_store(tenant_id, store_id)
    rows = (
        db.session.query(Product, func.sum(InventoryLot.quantity))
        .join(InventoryLot, InventoryLot.product_id == Product.id)
        .filter(
            Product.tenant_id == tenant_id,
            InventoryLot.store_id == store_id,
            InventoryLot.is_active.is_(True),
        )
        .group_by(Product.id)
        .order_by(Product.name.asc())
        .all()
    )
    overview = []
    for product, total in rows:
        total = int(total or 0)
        reserved = get_reserved_quantity(store_id, product.id)
        overview.append({
            "productId": product.id,
            "productName": product.name,
            "total": total,
            "reserved": reserved,
            "available": max(0, total - reserved),
        })
    return overview


def inventory_valuation(tenant_id: int, store_id: int | None = None) -> dict:
    """
    Stock value at lot cost, per product, plus totals.

    averageCost is the quantity-weighted cost across the product's lots.
    """
    if store_id is not None:
        store_service.get_store(tenant_id, store_id)

    value_expr = func.sum(InventoryLot.quantity * InventoryLot.cost_unit)
    query = (
        db.session.query(Product.id, Product.name, func.sum(InventoryLot.quantity), value_expr)
        .join(InventoryLot, InventoryLot.product_id == Product.id)
        .filter(
            Product.tenant_id == tenant_id,
            InventoryLot.is_active.is_(True),
            InventoryLot.quantity > 0,
        )
    )
    if store_id is not None:
        query = query.filter(InventoryLot.store_id == store_id)
    rows = query.group_by(Product.id, Product.name).order_by(Product.name.asc()).all()

    items = []
    total_qty = 0
    total_value = Decimal("0")
    for product_id, name, qty, value in rows:
        qty = int(qty or 0)
        value = Decimal(str(value or 0)).quantize(Decimal("0.01"))
        avg = (value / qty).quantize(Decimal("0.0001")) if qty else Decimal("0")
        items.append({
            "productId": product_id,
            "productName": name,
            "stockQty": qty,
            "stockValue": float(value),
            "averageCost": float(avg),
        })
        total_qty += qty
        total_value += value

    return {
        "storeId": store_id,
        "items": items,
        "totals": {"stockQty": total_qty, "stockValue": float(total_value)},
    }
