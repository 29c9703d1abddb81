# backend/pharmapos/services/reservation_service.py
"""
Cross-store stock reservation service.

WHY: A store can hold stock at a sibling store for a customer without
moving inventory. An APPROVED reservation lowers availability at the source
store until it is fulfilled or cancelled.

LIFECYCLE:
1. REQUESTED: created by the requesting store, reserved_qty = 0 on every line
2. APPROVED: source store (pharmacist/admin) confirmed; reserved_qty = quantity
3. FULFILLED: requesting store recorded pickup (no stock movement here)
4. REJECTED: source store declined (reason mandatory)
5. CANCELED: from REQUESTED or APPROVED, releases the hold

APPROVAL is all-or-nothing: every line is checked (quantities aggregated per
product) while holding the source store's stock locks; a single shortfall
leaves the reservation untouched in REQUESTED.
"""
from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from pharmapos.extensions import db
from pharmapos.errors import (
    Forbidden,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from pharmapos.models import StockReservation, StockReservationItem
from pharmapos.permissions import Actor, assert_elevated
from pharmapos.services import catalog_service, inventory_service, store_service
from pharmapos.services.audit_service import append_audit_event
from pharmapos.services.concurrency import lock_for_update, run_atomic
from pharmapos.services.notification_service import notify_store
from pharmapos.time_utils import utcnow


RESERVATION_STATUS_REQUESTED = "REQUESTED"
RESERVATION_STATUS_APPROVED = "APPROVED"
RESERVATION_STATUS_REJECTED = "REJECTED"
RESERVATION_STATUS_CANCELED = "CANCELED"
RESERVATION_STATUS_FULFILLED = "FULFILLED"


def _aggregate(lines) -> "OrderedDict[int, int]":
    totals: OrderedDict[int, int] = OrderedDict()
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def get_reservation(tenant_id: int, reservation_id: int) -> StockReservation:
    reservation = db.session.query(StockReservation).filter_by(id=reservation_id, tenant_id=tenant_id).first()
    if not reservation:
        raise NotFound(f"Reservation {reservation_id} not found")
    return reservation


def _load_locked(tenant_id: int, reservation_id: int) -> StockReservation:
    reservation = lock_for_update(
        db.session.query(StockReservation).filter_by(id=reservation_id, tenant_id=tenant_id)
    ).first()
    if not reservation:
        raise NotFound(f"Reservation {reservation_id} not found")
    return reservation


def _assert_party(actor: Actor, reservation: StockReservation) -> None:
    if actor.is_admin:
        return
    if actor.store_id not in (reservation.request_store_id, reservation.source_store_id):
        raise Forbidden("Reservation belongs to other stores")


def get_reservation_for(actor: Actor, reservation_id: int) -> StockReservation:
    """Reservation as seen by its requesting or source store (or an admin)."""
    reservation = get_reservation(actor.tenant_id, reservation_id)
    _assert_party(actor, reservation)
    return reservation


def list_reservations(actor: Actor, *, status: str | None = None, direction: str | None = None) -> list[StockReservation]:
    """
    Reservations involving the actor's current store.

    direction: "incoming" (we are the source), "outgoing" (we requested), or None for both.
    Admins without a current store see every reservation of the tenant.
    """
    query = db.session.query(StockReservation).filter(StockReservation.tenant_id == actor.tenant_id)
    if actor.store_id is not None:
        if direction == "incoming":
            query = query.filter(StockReservation.source_store_id == actor.store_id)
        elif direction == "outgoing":
            query = query.filter(StockReservation.request_store_id == actor.store_id)
        else:
            query = query.filter(db.or_(
                StockReservation.source_store_id == actor.store_id,
                StockReservation.request_store_id == actor.store_id,
            ))
    if status:
        query = query.filter(StockReservation.status == status)
    return query.order_by(StockReservation.created_at.desc(), StockReservation.id.desc()).all()


def request_reservation(
    actor: Actor,
    *,
    source_store_id: int,
    items: list[tuple[int, int]],
    customer_id: int | None = None,
    note: str | None = None,
) -> StockReservation:
    """
    Create a reservation (REQUESTED) from the actor's current store.

    Raises:
        ValidationError: no request store, same source, empty items, bad quantity
    """
    request_store_id = actor.store_id
    if request_store_id is None:
        raise ValidationError("A current store is required to request a reservation")
    if source_store_id == request_store_id:
        raise ValidationError("Source store must differ from the requesting store")
    if not items:
        raise ValidationError("At least one item is required")
    for product_id, quantity in items:
        if quantity <= 0:
            raise ValidationError(f"Quantity for product {product_id} must be positive")

    store_service.get_active_store(actor.tenant_id, request_store_id)
    source = store_service.get_active_store(actor.tenant_id, source_store_id)
    for product_id, _ in items:
        catalog_service.get_product(actor.tenant_id, product_id)
    if customer_id is not None:
        catalog_service.get_customer(actor.tenant_id, customer_id)

    def _op():
        reservation = StockReservation(
            tenant_id=actor.tenant_id,
            request_store_id=request_store_id,
            source_store_id=source.id,
            customer_id=customer_id,
            status=RESERVATION_STATUS_REQUESTED,
            note=note,
            requested_by_id=actor.id,
        )
        db.session.add(reservation)
        db.session.flush()

        for product_id, quantity in items:
            db.session.add(StockReservationItem(
                reservation_id=reservation.id,
                product_id=product_id,
                quantity=quantity,
                reserved_qty=0,
            ))

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=request_store_id,
            event_type="reservation.requested",
            entity_type="reservation",
            entity_id=reservation.id,
            actor_user_id=actor.id,
            note=note,
        )
        notify_store(
            tenant_id=actor.tenant_id,
            store_id=source.id,
            kind="RESERVATION_REQUESTED",
            message=f"Reservation #{reservation.id} requested by store {request_store_id}",
            ref_type="reservation",
            ref_id=reservation.id,
            actor_id=actor.id,
        )
        return reservation

    reservation = run_atomic(_op)
    current_app.logger.info("reservation.requested id=%s store=%s source=%s", reservation.id, request_store_id, source_store_id)
    return reservation


def approve_reservation(actor: Actor, reservation_id: int) -> StockReservation:
    """
    REQUESTED -> APPROVED.

    Only a pharmacist/admin acting for the source store. For every product,
    availability at the source (excluding this reservation) must cover the
    requested total; otherwise InsufficientStock and nothing changes.
    """
    assert_elevated(actor, "approve reservations")
    reservation = get_reservation(actor.tenant_id, reservation_id)
    if not actor.is_admin and actor.store_id != reservation.source_store_id:
        raise Forbidden("Only the source store may approve this reservation")
    source_store_id = reservation.source_store_id
    keys = [(source_store_id, item.product_id) for item in reservation.items]

    def _op():
        locked = _load_locked(actor.tenant_id, reservation_id)
        if locked.status != RESERVATION_STATUS_REQUESTED:
            raise InvalidStateTransition("reservation", locked.id, locked.status, "approve")

        totals = _aggregate((item.product_id, item.quantity) for item in locked.items)
        # Validate every product before touching any line
        for product_id, requested in totals.items():
            inventory_service.assert_available(
                source_store_id, product_id, requested, exclude_reservation_id=locked.id
            )

        for item in locked.items:
            item.reserved_qty = item.quantity
        locked.status = RESERVATION_STATUS_APPROVED
        locked.reviewed_by_id = actor.id
        locked.reviewed_at = utcnow()

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=source_store_id,
            event_type="reservation.approved",
            entity_type="reservation",
            entity_id=locked.id,
            actor_user_id=actor.id,
        )
        notify_store(
            tenant_id=actor.tenant_id,
            store_id=locked.request_store_id,
            kind="RESERVATION_APPROVED",
            message=f"Reservation #{locked.id} approved by store {source_store_id}",
            ref_type="reservation",
            ref_id=locked.id,
            actor_id=actor.id,
        )
        return locked

    reservation = run_atomic(_op, stock_keys=keys)
    current_app.logger.info("reservation.approved id=%s source=%s", reservation.id, source_store_id)
    return reservation


def reject_reservation(actor: Actor, reservation_id: int, reason: str) -> StockReservation:
    """REQUESTED -> REJECTED by the source store; reason mandatory."""
    assert_elevated(actor, "reject reservations")
    if not reason or not reason.strip():
        raise ValidationError("reason is required to reject a reservation")
    reservation = get_reservation(actor.tenant_id, reservation_id)
    if not actor.is_admin and actor.store_id != reservation.source_store_id:
        raise Forbidden("Only the source store may reject this reservation")

    def _op():
        locked = _load_locked(actor.tenant_id, reservation_id)
        if locked.status != RESERVATION_STATUS_REQUESTED:
            raise InvalidStateTransition("reservation", locked.id, locked.status, "reject")

        locked.status = RESERVATION_STATUS_REJECTED
        locked.reject_reason = reason.strip()
        locked.reviewed_by_id = actor.id
        locked.reviewed_at = utcnow()

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=locked.source_store_id,
            event_type="reservation.rejected",
            entity_type="reservation",
            entity_id=locked.id,
            actor_user_id=actor.id,
            note=locked.reject_reason,
        )
        notify_store(
            tenant_id=actor.tenant_id,
            store_id=locked.request_store_id,
            kind="RESERVATION_REJECTED",
            message=f"Reservation #{locked.id} rejected: {locked.reject_reason}",
            ref_type="reservation",
            ref_id=locked.id,
            actor_id=actor.id,
        )
        return locked

    reservation = run_atomic(_op)
    current_app.logger.info("reservation.rejected id=%s", reservation.id)
    return reservation


def cancel_reservation(actor: Actor, reservation_id: int, reason: str | None = None) -> StockReservation:
    """
    REQUESTED | APPROVED -> CANCELED.

    Either party may cancel. Cancelling an APPROVED reservation releases its
    hold (reserved_qty back to 0) under the source store's stock locks.
    """
    reservation = get_reservation(actor.tenant_id, reservation_id)
    _assert_party(actor, reservation)
    keys = [(reservation.source_store_id, item.product_id) for item in reservation.items]

    def _op():
        locked = _load_locked(actor.tenant_id, reservation_id)
        if locked.status not in (RESERVATION_STATUS_REQUESTED, RESERVATION_STATUS_APPROVED):
            raise InvalidStateTransition("reservation", locked.id, locked.status, "cancel")

        for item in locked.items:
            item.reserved_qty = 0
        locked.status = RESERVATION_STATUS_CANCELED
        locked.canceled_at = utcnow()

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=actor.store_id,
            event_type="reservation.canceled",
            entity_type="reservation",
            entity_id=locked.id,
            actor_user_id=actor.id,
            note=reason,
        )
        return locked

    reservation = run_atomic(_op, stock_keys=keys)
    current_app.logger.info("reservation.canceled id=%s", reservation.id)
    return reservation


def fulfill_reservation(actor: Actor, reservation_id: int) -> StockReservation:
    """
    APPROVED -> FULFILLED, recorded by the requesting store after pickup.

    Moves no inventory: the hold is released and the stock itself leaves
    through the sale or transfer that follows.
    """
    reservation = get_reservation(actor.tenant_id, reservation_id)
    if not actor.is_admin and actor.store_id != reservation.request_store_id:
        raise Forbidden("Only the requesting store may fulfill this reservation")
    keys = [(reservation.source_store_id, item.product_id) for item in reservation.items]

    def _op():
        locked = _load_locked(actor.tenant_id, reservation_id)
        if locked.status != RESERVATION_STATUS_APPROVED:
            raise InvalidStateTransition("reservation", locked.id, locked.status, "fulfill")

        locked.status = RESERVATION_STATUS_FULFILLED
        locked.fulfilled_at = utcnow()

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=locked.request_store_id,
            event_type="reservation.fulfilled",
            entity_type="reservation",
            entity_id=locked.id,
            actor_user_id=actor.id,
        )
        return locked

    reservation = run_atomic(_op, stock_keys=keys)
    current_app.logger.info("reservation.fulfilled id=%s", reservation.id)
    return reservation
