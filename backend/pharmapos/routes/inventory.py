# backend/pharmapos/routes/inventory.py
"""
Inventory API routes: availability, lots, receipts, adjustments, movement log, valuation.

All operations act on the caller's current store (X-Store-Id).
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_elevated
from ..errors import ValidationError
from ..responses import json_body, ok
from ..services import inventory_service
from ..validation import (
    optional_date,
    optional_int,
    optional_text,
    require_choice,
    require_int,
    require_non_negative_int,
    require_positive_int,
    require_text,
    require_unit_cost,
)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def current_store_id() -> int:
    if g.actor.store_id is None:
        raise ValidationError("No current store: send X-Store-Id")
    return g.actor.store_id


@inventory_bp.get("/overview")
@require_auth
def overview():
    return ok(inventory_service.stock_overview(g.actor.tenant_id, current_store_id()))


@inventory_bp.get("/availability")
@require_auth
def availability():
    """Available quantity of a product in the current store (lots minus approved reservations)."""
    store_id = current_store_id()
    product_id = require_int(request.args.get("productId"), "productId")
    total = inventory_service.get_total_lot_quantity(store_id, product_id)
    reserved = inventory_service.get_reserved_quantity(store_id, product_id)
    return ok({
        "storeId": store_id,
        "productId": product_id,
        "total": total,
        "reserved": reserved,
        "available": max(0, total - reserved),
    })


@inventory_bp.get("/lots")
@require_auth
def list_lots():
    lots = inventory_service.list_lots(
        g.actor.tenant_id,
        current_store_id(),
        product_id=optional_int(request.args.get("productId"), "productId"),
        expiring_within_days=optional_int(request.args.get("expiringWithinDays"), "expiringWithinDays"),
        search=request.args.get("search"),
        include_empty=request.args.get("includeEmpty", "").lower() in ("1", "true", "yes"),
    )
    return ok([lot.to_dict() for lot in lots])


@inventory_bp.post("/receive")
@require_auth
@require_elevated
def receive():
    """
    Receive stock into a lot.

    Request body:
    {
        "productId": int,
        "lotNumber": str,
        "expiration": "YYYY-MM-DD" (optional),
        "costUnit": number,
        "quantity": int,
        "reason": str (optional)
    }
    """
    data = json_body()
    lot = inventory_service.receive_lot(
        g.actor,
        store_id=current_store_id(),
        product_id=require_int(data.get("productId"), "productId"),
        lot_number=require_text(data.get("lotNumber"), "lotNumber", max_length=64),
        expiration=optional_date(data.get("expiration"), "expiration"),
        cost_unit=require_unit_cost(data.get("costUnit")),
        quantity=require_positive_int(data.get("quantity"), "quantity"),
        reason=optional_text(data.get("reason"), "reason", max_length=255),
    )
    return ok(lot.to_dict(), 201)


@inventory_bp.post("/adjust")
@require_auth
@require_elevated
def adjust():
    """
    Request body:
    {
        "type": "ADJUST_POS" | "ADJUST_NEG",
        "quantity": int,
        "reason": str,
        "lotId": int (optional),
        "productId": int (required without lotId)
    }
    """
    data = json_body()
    movements = inventory_service.adjust_inventory(
        g.actor,
        store_id=current_store_id(),
        type=require_choice(data.get("type"), "type", inventory_service.ADJUSTMENT_TYPES),
        quantity=require_positive_int(data.get("quantity"), "quantity"),
        reason=require_text(data.get("reason"), "reason"),
        lot_id=optional_int(data.get("lotId"), "lotId"),
        product_id=optional_int(data.get("productId"), "productId"),
    )
    return ok([m.to_dict() for m in movements], 201)


@inventory_bp.put("/lots/<int:lot_id>")
@require_auth
@require_elevated
def correct_lot(lot_id: int):
    data = json_body()
    quantity = data.get("quantity")
    cost_unit = data.get("costUnit")
    lot = inventory_service.correct_lot(
        g.actor,
        lot_id,
        reason=require_text(data.get("reason"), "reason"),
        quantity=require_non_negative_int(quantity, "quantity") if quantity is not None else None,
        cost_unit=require_unit_cost(cost_unit) if cost_unit is not None else None,
    )
    return ok(lot.to_dict())


@inventory_bp.get("/products/<int:product_id>/movements")
@require_auth
def list_movements(product_id: int):
    limit = optional_int(request.args.get("limit"), "limit") or 100
    movements = inventory_service.list_movements(g.actor.tenant_id, current_store_id(), product_id, limit=limit)
    return ok([m.to_dict() for m in movements])


@inventory_bp.get("/valuation")
@require_auth
@require_elevated
def valuation():
    """Valuation of the current store, or of the whole tenant with ?scope=tenant (admin)."""
    store_id = None if (request.args.get("scope") == "tenant" and g.actor.is_admin) else current_store_id()
    return ok(inventory_service.inventory_valuation(g.actor.tenant_id, store_id))
