# backend/pharmapos/services/transfer_service.py
"""
Inter-store transfer service.

WHY: Move stock between stores of a tenant with a request/ship/receive
workflow and a full movement trail at both ends.

LIFECYCLE:
1. DRAFT: created by the destination store, which is asking for stock
2. SENT: origin store shipped; FEFO TRANSFER_OUT movements at the origin
3. RECEIVED: destination store received; lot upserts + TRANSFER_IN movements
4. CANCELED: only from DRAFT

A transfer is sent exactly once. A partial send may ship less than was
requested per product (never more); the shipped amount is kept on the line
as quantity_sent. After SENT there is no way back: errors are corrected
with adjustments.
"""
from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from pharmapos.extensions import db
from pharmapos.errors import (
    Forbidden,
    InvalidStateTransition,
    NoShipmentMovements,
    NotFound,
    ValidationError,
)
from pharmapos.models import InventoryMovement, StockTransfer, StockTransferItem
from pharmapos.models.inventory import MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT
from pharmapos.permissions import Actor, assert_elevated
from pharmapos.services import catalog_service, fefo_service, inventory_service, store_service
from pharmapos.services.audit_service import append_audit_event
from pharmapos.services.concurrency import lock_for_update, run_atomic
from pharmapos.services.notification_service import notify_store
from pharmapos.time_utils import utcnow


# Transfer status constants
TRANSFER_STATUS_DRAFT = "DRAFT"
TRANSFER_STATUS_SENT = "SENT"
TRANSFER_STATUS_RECEIVED = "RECEIVED"
TRANSFER_STATUS_CANCELED = "CANCELED"


def get_transfer(tenant_id: int, transfer_id: int) -> StockTransfer:
    transfer = db.session.query(StockTransfer).filter_by(id=transfer_id, tenant_id=tenant_id).first()
    if not transfer:
        raise NotFound(f"Transfer {transfer_id} not found")
    return transfer


def _assert_party(actor: Actor, transfer: StockTransfer) -> None:
    if actor.is_admin:
        return
    if actor.store_id not in (transfer.origin_store_id, transfer.destination_store_id):
        raise Forbidden("Transfer belongs to other stores")


def get_transfer_for(actor: Actor, transfer_id: int) -> StockTransfer:
    """Transfer as seen by one of its two stores (or an admin)."""
    transfer = get_transfer(actor.tenant_id, transfer_id)
    _assert_party(actor, transfer)
    return transfer


def _load_locked(tenant_id: int, transfer_id: int) -> StockTransfer:
    transfer = lock_for_update(
        db.session.query(StockTransfer).filter_by(id=transfer_id, tenant_id=tenant_id)
    ).first()
    if not transfer:
        raise NotFound(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(actor: Actor, *, status: str | None = None, direction: str | None = None) -> list[StockTransfer]:
    """
    Transfers involving the actor's current store.

    direction: "incoming" (we are the destination), "outgoing" (we ship), or None for both.
    """
    query = db.session.query(StockTransfer).filter(StockTransfer.tenant_id == actor.tenant_id)
    if actor.store_id is not None:
        if direction == "incoming":
            query = query.filter(StockTransfer.destination_store_id == actor.store_id)
        elif direction == "outgoing":
            query = query.filter(StockTransfer.origin_store_id == actor.store_id)
        else:
            query = query.filter(db.or_(
                StockTransfer.origin_store_id == actor.store_id,
                StockTransfer.destination_store_id == actor.store_id,
            ))
    if status:
        query = query.filter(StockTransfer.status == status)
    return query.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc()).all()


def create_transfer(
    actor: Actor,
    *,
    origin_store_id: int,
    items: list[tuple[int, int]],
    note: str | None = None,
) -> StockTransfer:
    """
    Create a transfer request (DRAFT) into the actor's current store.

    Duplicate products are merged into one line.

    Raises:
        ValidationError: no current store, same origin, empty items, bad quantity
    """
    destination_store_id = actor.store_id
    if destination_store_id is None:
        raise ValidationError("A current store is required to request a transfer")
    if origin_store_id == destination_store_id:
        raise ValidationError("Cannot transfer to the same store")
    if not items:
        raise ValidationError("At least one item is required")

    requested: OrderedDict[int, int] = OrderedDict()
    for product_id, quantity in items:
        if quantity <= 0:
            raise ValidationError(f"Quantity for product {product_id} must be positive")
        requested[product_id] = requested.get(product_id, 0) + quantity

    store_service.get_active_store(actor.tenant_id, origin_store_id)
    store_service.get_active_store(actor.tenant_id, destination_store_id)
    for product_id in requested:
        catalog_service.get_product(actor.tenant_id, product_id)

    def _op():
        transfer = StockTransfer(
            tenant_id=actor.tenant_id,
            origin_store_id=origin_store_id,
            destination_store_id=destination_store_id,
            status=TRANSFER_STATUS_DRAFT,
            note=note,
            created_by_id=actor.id,
        )
        db.session.add(transfer)
        db.session.flush()  # Get ID

        for product_id, quantity in requested.items():
            db.session.add(StockTransferItem(transfer_id=transfer.id, product_id=product_id, quantity=quantity))

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=destination_store_id,
            event_type="transfer.created",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_user_id=actor.id,
            note=note,
        )
        notify_store(
            tenant_id=actor.tenant_id,
            store_id=origin_store_id,
            kind="TRANSFER_REQUESTED",
            message=f"Transfer #{transfer.id} requested by store {destination_store_id}",
            ref_type="transfer",
            ref_id=transfer.id,
            actor_id=actor.id,
        )
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info(
        "transfer.created id=%s origin=%s destination=%s", transfer.id, origin_store_id, destination_store_id
    )
    return transfer


def _shipment_plan(transfer: StockTransfer, items: list[tuple[int, int]] | None) -> "OrderedDict[int, int]":
    """
    Quantity to ship per product.

    Without items: everything requested. With items: a subset, each product
    at most what was requested; unknown products are rejected.
    """
    requested = OrderedDict((item.product_id, item.quantity) for item in transfer.items)
    if items is None:
        return requested

    plan: OrderedDict[int, int] = OrderedDict((product_id, 0) for product_id in requested)
    for product_id, quantity in items:
        if product_id not in requested:
            raise ValidationError(f"Product {product_id} is not part of transfer {transfer.id}")
        if quantity < 0:
            raise ValidationError(f"Quantity for product {product_id} must not be negative")
        plan[product_id] += quantity
        if plan[product_id] > requested[product_id]:
            raise ValidationError(
                f"Cannot send {plan[product_id]} of product {product_id}; "
                f"only {requested[product_id]} requested",
                details={"productId": product_id, "requested": requested[product_id], "sent": plan[product_id]},
            )
    if not any(plan.values()):
        raise ValidationError("Nothing to send")
    return plan


def send_transfer(
    actor: Actor,
    transfer_id: int,
    items: list[tuple[int, int]] | None = None,
) -> StockTransfer:
    """
    DRAFT -> SENT, by a pharmacist/admin of the origin store.

    Every product is checked against reservation-aware availability at the
    origin before any lot is touched; then each is consumed FEFO with
    TRANSFER_OUT movements tagged with the transfer. One transaction: a
    shortfall on any product ships nothing.
    """
    assert_elevated(actor, "send transfers")
    transfer = get_transfer(actor.tenant_id, transfer_id)
    if not actor.is_admin and actor.store_id != transfer.origin_store_id:
        raise Forbidden("Only the origin store may send this transfer")
    origin_store_id = transfer.origin_store_id
    keys = [(origin_store_id, item.product_id) for item in transfer.items]

    def _op():
        locked = _load_locked(actor.tenant_id, transfer_id)
        if locked.status != TRANSFER_STATUS_DRAFT:
            raise InvalidStateTransition("transfer", locked.id, locked.status, "send")

        plan = _shipment_plan(locked, items)

        for product_id, quantity in plan.items():
            if quantity:
                inventory_service.assert_available(origin_store_id, product_id, quantity)

        touched = []
        for product_id, quantity in plan.items():
            if not quantity:
                continue
            result = fefo_service.consume_fefo(
                origin_store_id,
                product_id,
                quantity,
                MOVEMENT_TRANSFER_OUT,
                actor_id=actor.id,
                reason=f"Transfer #{locked.id}",
                transfer_id=locked.id,
            )
            touched.extend(result.lots)

        for item in locked.items:
            item.quantity_sent = plan.get(item.product_id, 0)

        inventory_service.assert_lots_balanced(touched)

        locked.status = TRANSFER_STATUS_SENT
        locked.sent_at = utcnow()
        locked.sent_by_id = actor.id

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=origin_store_id,
            event_type="transfer.sent",
            entity_type="transfer",
            entity_id=locked.id,
            actor_user_id=actor.id,
            payload={"items": [{"productId": p, "quantity": q} for p, q in plan.items()]},
        )
        notify_store(
            tenant_id=actor.tenant_id,
            store_id=locked.destination_store_id,
            kind="TRANSFER_SENT",
            message=f"Transfer #{locked.id} shipped by store {origin_store_id}",
            ref_type="transfer",
            ref_id=locked.id,
            actor_id=actor.id,
        )
        return locked

    transfer = run_atomic(_op, stock_keys=keys)
    current_app.logger.info("transfer.sent id=%s store=%s", transfer.id, origin_store_id)
    return transfer


def receive_transfer(actor: Actor, transfer_id: int) -> StockTransfer:
    """
    SENT -> RECEIVED, by a pharmacist/admin of the destination store.

    Each TRANSFER_OUT movement becomes a destination lot upsert keyed by the
    origin lot's (lot_number, expiration), carrying the origin unit cost,
    plus a TRANSFER_IN movement of the same quantity.

    Raises:
        InvalidStateTransition: transfer not in SENT (includes a second receive)
        NoShipmentMovements: SENT but no TRANSFER_OUT movements recorded
    """
    assert_elevated(actor, "receive transfers")
    transfer = get_transfer(actor.tenant_id, transfer_id)
    if not actor.is_admin and actor.store_id != transfer.destination_store_id:
        raise Forbidden("Only the destination store may receive this transfer")
    destination_store_id = transfer.destination_store_id
    keys = [(destination_store_id, item.product_id) for item in transfer.items]

    def _op():
        locked = _load_locked(actor.tenant_id, transfer_id)
        if locked.status != TRANSFER_STATUS_SENT:
            raise InvalidStateTransition("transfer", locked.id, locked.status, "receive")

        shipped = (
            db.session.query(InventoryMovement)
            .filter_by(transfer_id=locked.id, type=MOVEMENT_TRANSFER_OUT)
            .order_by(InventoryMovement.id.asc())
            .all()
        )
        if not shipped:
            raise NoShipmentMovements(f"Transfer {locked.id} has no shipment movements")

        touched = []
        for out in shipped:
            origin_lot = out.lot
            movement = inventory_service.credit_lot(
                store_id=destination_store_id,
                product_id=out.product_id,
                lot_number=origin_lot.lot_number,
                expiration=origin_lot.expiration,
                cost_unit=origin_lot.cost_unit,
                quantity=out.quantity,
                movement_type=MOVEMENT_TRANSFER_IN,
                actor_id=actor.id,
                reason=f"Transfer #{locked.id}",
                transfer_id=locked.id,
            )
            touched.append(movement.lot)

        inventory_service.assert_lots_balanced(touched)

        locked.status = TRANSFER_STATUS_RECEIVED
        locked.received_at = utcnow()
        locked.received_by_id = actor.id

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=destination_store_id,
            event_type="transfer.received",
            entity_type="transfer",
            entity_id=locked.id,
            actor_user_id=actor.id,
        )
        notify_store(
            tenant_id=actor.tenant_id,
            store_id=locked.origin_store_id,
            kind="TRANSFER_RECEIVED",
            message=f"Transfer #{locked.id} received by store {destination_store_id}",
            ref_type="transfer",
            ref_id=locked.id,
            actor_id=actor.id,
        )
        return locked

    transfer = run_atomic(_op, stock_keys=keys)
    current_app.logger.info("transfer.received id=%s store=%s", transfer.id, destination_store_id)
    return transfer


def cancel_transfer(actor: Actor, transfer_id: int, reason: str | None = None) -> StockTransfer:
    """DRAFT -> CANCELED, by either store. SENT/RECEIVED are one-way doors."""
    transfer = get_transfer(actor.tenant_id, transfer_id)
    if not actor.is_admin and actor.store_id not in (transfer.origin_store_id, transfer.destination_store_id):
        raise Forbidden("Transfer belongs to other stores")

    def _op():
        locked = _load_locked(actor.tenant_id, transfer_id)
        if locked.status != TRANSFER_STATUS_DRAFT:
            raise InvalidStateTransition("transfer", locked.id, locked.status, "cancel")

        locked.status = TRANSFER_STATUS_CANCELED
        locked.canceled_at = utcnow()
        locked.canceled_by_id = actor.id

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=actor.store_id,
            event_type="transfer.canceled",
            entity_type="transfer",
            entity_id=locked.id,
            actor_user_id=actor.id,
            note=reason,
        )
        return locked

    transfer = run_atomic(_op)
    current_app.logger.info("transfer.canceled id=%s", transfer.id)
    return transfer
