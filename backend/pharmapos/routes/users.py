# backend/pharmapos/routes/users.py
from flask import Blueprint, current_app, g

from ..decorators import require_admin, require_auth
from ..errors import ValidationError
from ..responses import json_body, ok
from ..services import auth_service, store_service
from ..validation import require_int, require_text

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _user_dict(user) -> dict:
    data = user.to_dict()
    data["storeIds"] = store_service.list_user_store_ids(user.id)
    return data


def _store_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("storeIds must be a list")
    return [require_int(value, "storeIds") for value in raw]


@users_bp.get("")
@require_auth
@require_admin
def list_users():
    users = auth_service.list_users(g.actor.tenant_id)
    return ok([_user_dict(u) for u in users])


@users_bp.post("")
@require_auth
@require_admin
def create_user():
    """
    Request body:
    {
        "name": str,
        "email": str,
        "password": str,
        "role": "ADMIN" | "PHARMACIST" | "SELLER" | "CASHIER",
        "storeIds": [int] (optional, first is the default store)
    }

    Non-admins given no stores are linked to the tenant's default store.
    """
    data = json_body()
    store_ids = _store_ids(data.get("storeIds"))
    for store_id in store_ids:
        store_service.get_active_store(g.actor.tenant_id, store_id)

    user = auth_service.create_user(
        g.actor.tenant_id,
        name=require_text(data.get("name"), "name"),
        email=require_text(data.get("email"), "email"),
        password=data.get("password") or "",
        role=require_text(data.get("role"), "role", max_length=32),
    )
    store_service.set_user_stores(user.id, store_ids)
    current_app.logger.info("user.created id=%s role=%s by=%s", user.id, user.role, g.actor.id)
    return ok(_user_dict(user), 201)


@users_bp.put("/<int:user_id>")
@require_auth
@require_admin
def update_user(user_id: int):
    """
    Any of name, email, password, role, isActive, storeIds.

    storeIds replaces the store links. Becoming ADMIN drops them.
    """
    data = json_body()
    changes = {}
    for field, key in (("name", "name"), ("email", "email"), ("password", "password"), ("role", "role")):
        if field in data:
            changes[key] = data[field]
    if "isActive" in data:
        changes["is_active"] = bool(data["isActive"])
    if not changes and "storeIds" not in data:
        raise ValidationError("No fields to update")
    if user_id == g.actor.id and changes.get("is_active") is False:
        raise ValidationError("You cannot deactivate yourself")

    user = auth_service.get_user(g.actor.tenant_id, user_id)
    if changes:
        user = auth_service.update_user(g.actor.tenant_id, user_id, **changes)
    if "storeIds" in data or "role" in changes:
        store_ids = _store_ids(data["storeIds"]) if "storeIds" in data else store_service.list_user_store_ids(user.id)
        store_service.set_user_stores(user.id, store_ids)
    return ok(_user_dict(user))
