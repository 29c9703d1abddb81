# backend/pharmapos/routes/cash.py
from decimal import Decimal

from flask import Blueprint, g

from ..decorators import require_auth
from ..responses import json_body, ok
from ..services import cash_service
from ..validation import optional_money, optional_text, require_choice, require_money

cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


@cash_bp.get("/sessions/current")
@require_auth
def current_session():
    """Open session of the current store, or null."""
    session = cash_service.get_open_session(g.actor.store_id) if g.actor.store_id else None
    return ok(session.to_dict(include_movements=True) if session else None)


@cash_bp.post("/sessions/open")
@require_auth
def open_session():
    data = json_body()
    session = cash_service.open_session(
        g.actor,
        initial_cash=optional_money(data.get("initialCash"), "initialCash") or Decimal("0"),
        note=optional_text(data.get("note"), "note"),
    )
    return ok(session.to_dict(), 201)


@cash_bp.post("/sessions/<int:session_id>/close")
@require_auth
def close_session(session_id: int):
    """
    Request body:
    {
        "countedCash": number,
        "note": str (optional)
    }

    Returns the closed session with "expected" and "divergence".
    """
    data = json_body()
    session = cash_service.close_session(
        g.actor,
        session_id,
        counted_cash=require_money(data.get("countedCash"), "countedCash"),
        note=optional_text(data.get("note"), "note"),
    )
    return ok(session.to_dict(include_movements=True))


@cash_bp.post("/movements")
@require_auth
def add_movement():
    data = json_body()
    movement = cash_service.add_cash_movement(
        g.actor,
        type=require_choice(data.get("type"), "type", cash_service.MANUAL_MOVEMENT_TYPES),
        amount=require_money(data.get("amount"), "amount", allow_zero=False),
        reason=optional_text(data.get("reason"), "reason", max_length=255),
    )
    return ok(movement.to_dict(), 201)
