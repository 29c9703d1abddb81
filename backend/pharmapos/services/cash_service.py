"""
Cash session service.

WHY: Cash accountability per store. Every payment lands in the open session
as a RECEIPT; supplies and withdrawals are explicit movements; closing
compares the counted cash with what the drawer should hold.

DESIGN PRINCIPLES:
- One open session per store at a time
- Sessions are immutable once closed
- expected = initial + cash receipts + supplies - withdrawals - cash refunds
- divergence = counted - expected
"""
from __future__ import annotations

from decimal import Decimal

from flask import current_app

from pharmapos.extensions import db
from pharmapos.errors import (
    InvalidStateTransition,
    NoOpenCashSession,
    NotFound,
    ValidationError,
)
from pharmapos.models import CashMovement, CashSession
from pharmapos.permissions import Actor
from pharmapos.services import store_service
from pharmapos.services.audit_service import append_audit_event
from pharmapos.services.concurrency import lock_for_update, run_atomic
from pharmapos.time_utils import utcnow


CASH_RECEIPT = "RECEIPT"
CASH_SUPPLY = "SUPPLY"
CASH_WITHDRAWAL = "WITHDRAWAL"
CASH_ADJUSTMENT = "ADJUSTMENT"
CASH_REFUND = "REFUND"

# Types an operator can post by hand; RECEIPT comes from sale payment
MANUAL_MOVEMENT_TYPES = (CASH_SUPPLY, CASH_WITHDRAWAL, CASH_ADJUSTMENT)
REASON_REQUIRED_TYPES = (CASH_WITHDRAWAL, CASH_ADJUSTMENT)

METHOD_CASH = "CASH"


def get_open_session(store_id: int) -> CashSession | None:
    return (
        db.session.query(CashSession)
        .filter(CashSession.store_id == store_id, CashSession.closed_at.is_(None))
        .order_by(CashSession.id.desc())
        .first()
    )


def require_open_session(store_id: int) -> CashSession:
    session = get_open_session(store_id)
    if not session:
        raise NoOpenCashSession(f"No open cash session for store {store_id}")
    return session


def _current_store(actor: Actor) -> int:
    if actor.store_id is None:
        raise ValidationError("A current store is required for cash operations")
    store_service.get_active_store(actor.tenant_id, actor.store_id)
    return actor.store_id


def open_session(actor: Actor, *, initial_cash: Decimal = Decimal("0"), note: str | None = None) -> CashSession:
    store_id = _current_store(actor)

    def _op():
        if get_open_session(store_id):
            raise ValidationError(f"Store {store_id} already has an open cash session")

        session = CashSession(
            store_id=store_id,
            opened_by_id=actor.id,
            initial_cash=initial_cash,
            note=note,
            opened_at=utcnow(),
        )
        db.session.add(session)
        db.session.flush()

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=store_id,
            event_type="cash.opened",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=actor.id,
            payload={"initialCash": float(initial_cash)},
        )
        return session

    session = run_atomic(_op)
    current_app.logger.info("cash.opened id=%s store=%s", session.id, store_id)
    return session


def compute_expected_cash(session: CashSession) -> Decimal:
    expected = Decimal(session.initial_cash or 0)
    for m in session.movements:
        amount = Decimal(m.amount)
        if m.type == CASH_RECEIPT and m.method == METHOD_CASH:
            expected += amount
        elif m.type == CASH_SUPPLY:
            expected += amount
        elif m.type == CASH_WITHDRAWAL:
            expected -= amount
        elif m.type == CASH_REFUND and m.method == METHOD_CASH:
            expected -= amount
    return expected.quantize(Decimal("0.01"))


def close_session(actor: Actor, session_id: int, *, counted_cash: Decimal, note: str | None = None) -> CashSession:
    """Close the session with the counted cash; records expected and divergence."""
    store_id = _current_store(actor)

    def _op():
        session = lock_for_update(
            db.session.query(CashSession).filter_by(id=session_id, store_id=store_id)
        ).first()
        if not session:
            raise NotFound(f"Cash session {session_id} not found")
        if not session.is_open:
            raise InvalidStateTransition("cash session", session.id, "CLOSED", "close")

        expected = compute_expected_cash(session)
        session.final_cash = counted_cash
        session.expected_cash = expected
        session.divergence = (counted_cash - expected).quantize(Decimal("0.01"))
        session.closed_at = utcnow()
        session.closed_by_id = actor.id
        if note:
            session.note = note

        append_audit_event(
            tenant_id=actor.tenant_id,
            store_id=store_id,
            event_type="cash.closed",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=actor.id,
            payload={
                "expected": float(expected),
                "counted": float(counted_cash),
                "divergence": float(session.divergence),
            },
        )
        return session

    session = run_atomic(_op)
    if session.divergence:
        current_app.logger.warning(
            "cash.closed id=%s store=%s divergence=%s", session.id, store_id, session.divergence
        )
    else:
        current_app.logger.info("cash.closed id=%s store=%s", session.id, store_id)
    return session


def add_cash_movement(actor: Actor, *, type: str, amount: Decimal, reason: str | None = None) -> CashMovement:
    """SUPPLY / WITHDRAWAL / ADJUSTMENT on the store's open session."""
    store_id = _current_store(actor)
    if type not in MANUAL_MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(MANUAL_MOVEMENT_TYPES)}")
    if amount <= 0:
        raise ValidationError("amount must be positive")
    if type in REASON_REQUIRED_TYPES and not (reason and reason.strip()):
        raise ValidationError(f"reason is required for {type}")

    def _op():
        session = require_open_session(store_id)
        movement = CashMovement(
            session_id=session.id,
            type=type,
            method=METHOD_CASH,
            amount=amount,
            reason=reason,
            created_by_id=actor.id,
        )
        db.session.add(movement)
        return movement

    return run_atomic(_op)


def record_receipt(session: CashSession, *, method: str, amount: Decimal, reason: str, ref_type: str, ref_id: int, actor_id: int) -> CashMovement:
    """RECEIPT line for a payment. No commit; part of the caller's transaction."""
    movement = CashMovement(
        session_id=session.id,
        type=CASH_RECEIPT,
        method=method,
        amount=amount,
        reason=reason,
        ref_type=ref_type,
        ref_id=ref_id,
        created_by_id=actor_id,
    )
    db.session.add(movement)
    return movement
