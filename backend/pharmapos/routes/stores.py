from flask import Blueprint, current_app, g, request

from ..decorators import require_admin, require_auth
from ..errors import ValidationError
from ..responses import json_body, ok
from ..services import store_service
from ..validation import optional_text, require_text

stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("")
@require_auth
def list_stores():
    """
    Stores visible to the caller (all active stores for admins).

    Admins may pass ?all=true to include inactive stores.
    """
    if g.actor.is_admin and request.args.get("all", "").lower() in ("1", "true", "yes"):
        stores = store_service.list_stores(g.actor.tenant_id, include_inactive=True)
    else:
        stores = store_service.list_stores_for_user(g.current_user)
    return ok([s.to_dict() for s in stores])


@stores_bp.post("")
@require_auth
@require_admin
def create_store():
    """
    Request body:
    {
        "name": str,
        "code": str (optional),
        "isDefault": bool (optional)
    }
    """
    data = json_body()
    store = store_service.create_store(
        g.actor.tenant_id,
        require_text(data.get("name"), "name"),
        optional_text(data.get("code"), "code", max_length=32),
        is_default=bool(data.get("isDefault", False)),
    )
    current_app.logger.info("store.created id=%s tenant=%s by=%s", store.id, store.tenant_id, g.actor.id)
    return ok(store.to_dict(), 201)


@stores_bp.put("/<int:store_id>")
@require_auth
@require_admin
def update_store(store_id: int):
    data = json_body()
    changes = {}
    if "name" in data:
        changes["name"] = require_text(data["name"], "name")
    if "code" in data:
        changes["code"] = optional_text(data["code"], "code", max_length=32)
    if "isActive" in data:
        changes["is_active"] = bool(data["isActive"])
    if "isDefault" in data:
        changes["is_default"] = bool(data["isDefault"])
    if not changes:
        raise ValidationError("No fields to update")

    store = store_service.update_store(g.actor.tenant_id, store_id, **changes)
    return ok(store.to_dict())
