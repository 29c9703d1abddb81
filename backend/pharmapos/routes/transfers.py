# backend/pharmapos/routes/transfers.py
"""
Inter-store transfer API routes.

Gated by the tenant license feature inventoryTransfers.
"""
from flask import Blueprint, g, request

from ..decorators import require_auth, require_feature
from ..responses import json_body, ok
from ..services import audit_service, transfer_service
from ..services.licensing_service import FEATURE_INVENTORY_TRANSFERS
from ..validation import optional_text, parse_item_list, parse_partial_items, require_int

transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/inventory/transfers")


@transfers_bp.get("")
@require_auth
@require_feature(FEATURE_INVENTORY_TRANSFERS)
def list_transfers():
    transfers = transfer_service.list_transfers(
        g.actor,
        status=request.args.get("status"),
        direction=request.args.get("direction"),
    )
    return ok([t.to_dict(include_items=False) for t in transfers])


@transfers_bp.post("")
@require_auth
@require_feature(FEATURE_INVENTORY_TRANSFERS)
def create_transfer():
    """
    Request stock from another store into the current store.

    Request body:
    {
        "originStoreId": int,
        "items": [{"productId": int, "quantity": int}, ...],
        "note": str (optional)
    }

    Returns:
        201: Transfer created (DRAFT)
        400: Invalid request
        403: Feature disabled
    """
    data = json_body()
    transfer = transfer_service.create_transfer(
        g.actor,
        origin_store_id=require_int(data.get("originStoreId"), "originStoreId"),
        items=parse_item_list(data.get("items")),
        note=optional_text(data.get("note"), "note"),
    )
    return ok(transfer.to_dict(), 201)


@transfers_bp.get("/<int:transfer_id>")
@require_auth
@require_feature(FEATURE_INVENTORY_TRANSFERS)
def get_transfer(transfer_id: int):
    """Transfer with its stock movements and audit history. Only its two stores may read it."""
    transfer = transfer_service.get_transfer_for(g.actor, transfer_id)
    data = transfer.to_dict()
    data["movements"] = [m.to_dict() for m in transfer.movements]
    data["history"] = [
        e.to_dict()
        for e in audit_service.list_audit_events(tenant_id=g.actor.tenant_id, entity_type="transfer", entity_id=transfer.id)
    ]
    return ok(data)


@transfers_bp.post("/<int:transfer_id>/send")
@require_auth
@require_feature(FEATURE_INVENTORY_TRANSFERS)
def send_transfer(transfer_id: int):
    """
    Ship a DRAFT transfer from the origin store.

    Request body (optional, partial shipment):
    {
        "items": [{"productId": int, "quantity": int}, ...]
    }

    Returns:
        200: Transfer SENT
        400: Insufficient stock / invalid partial items
        403: Not the origin store or not pharmacist/admin
        409: Transfer not in DRAFT
    """
    data = json_body()
    items = parse_partial_items(data["items"]) if data.get("items") is not None else None
    transfer = transfer_service.send_transfer(g.actor, transfer_id, items)
    return ok(transfer.to_dict())


@transfers_bp.post("/<int:transfer_id>/receive")
@require_auth
@require_feature(FEATURE_INVENTORY_TRANSFERS)
def receive_transfer(transfer_id: int):
    transfer = transfer_service.receive_transfer(g.actor, transfer_id)
    return ok(transfer.to_dict())


@transfers_bp.post("/<int:transfer_id>/cancel")
@require_auth
@require_feature(FEATURE_INVENTORY_TRANSFERS)
def cancel_transfer(transfer_id: int):
    data = json_body()
    transfer = transfer_service.cancel_transfer(g.actor, transfer_id, optional_text(data.get("reason"), "reason"))
    return ok(transfer.to_dict())
