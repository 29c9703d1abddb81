# backend/pharmapos/routes/reservations.py
"""
Cross-store reservation API routes.

Gated by the tenant license feature inventoryReservations.
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_feature
from ..responses import json_body, ok
from ..services import audit_service, reservation_service
from ..services.licensing_service import FEATURE_INVENTORY_RESERVATIONS
from ..validation import optional_int, optional_text, parse_item_list, require_int, require_text

reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/inventory/reservations")


@reservations_bp.get("")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def list_reservations():
    reservations = reservation_service.list_reservations(
        g.actor,
        status=request.args.get("status"),
        direction=request.args.get("direction"),
    )
    return ok([r.to_dict() for r in reservations])


@reservations_bp.post("")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def request_reservation():
    """
    Request body:
    {
        "sourceStoreId": int,
        "items": [{"productId": int, "quantity": int}, ...],
        "customerId": int (optional),
        "note": str (optional)
    }
    """
    data = json_body()
    reservation = reservation_service.request_reservation(
        g.actor,
        source_store_id=require_int(data.get("sourceStoreId"), "sourceStoreId"),
        items=parse_item_list(data.get("items")),
        customer_id=optional_int(data.get("customerId"), "customerId"),
        note=optional_text(data.get("note"), "note"),
    )
    return ok(reservation.to_dict(), 201)


@reservations_bp.get("/<int:reservation_id>")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def get_reservation(reservation_id: int):
    reservation = reservation_service.get_reservation_for(g.actor, reservation_id)
    data = reservation.to_dict()
    data["history"] = [
        e.to_dict()
        for e in audit_service.list_audit_events(
            tenant_id=g.actor.tenant_id, entity_type="reservation", entity_id=reservation.id
        )
    ]
    return ok(data)


@reservations_bp.post("/<int:reservation_id>/approve")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def approve_reservation(reservation_id: int):
    return ok(reservation_service.approve_reservation(g.actor, reservation_id).to_dict())


@reservations_bp.post("/<int:reservation_id>/reject")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def reject_reservation(reservation_id: int):
    data = json_body()
    reason = require_text(data.get("reason"), "reason", max_length=2000)
    return ok(reservation_service.reject_reservation(g.actor, reservation_id, reason).to_dict())


@reservations_bp.post("/<int:reservation_id>/cancel")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def cancel_reservation(reservation_id: int):
    data = json_body()
    reason = optional_text(data.get("reason"), "reason")
    return ok(reservation_service.cancel_reservation(g.actor, reservation_id, reason).to_dict())


@reservations_bp.post("/<int:reservation_id>/fulfill")
@require_auth
@require_feature(FEATURE_INVENTORY_RESERVATIONS)
def fulfill_reservation(reservation_id: int):
    return ok(reservation_service.fulfill_reservation(g.actor, reservation_id).to_dict())
