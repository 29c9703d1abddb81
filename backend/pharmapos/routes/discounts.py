# backend/pharmapos/routes/discounts.py
from flask import Blueprint, g, request

from ..decorators import require_admin, require_auth
from ..errors import ValidationError
from ..responses import json_body, ok
from ..services import catalog_service
from ..time_utils import parse_iso_datetime
from ..validation import optional_int, require_choice, require_money

discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.get("")
@require_auth
def list_discounts():
    """Query: ?productId=<id>&active=true (active: switched on and not ended)."""
    discounts = catalog_service.list_discounts(
        g.actor.tenant_id,
        product_id=optional_int(request.args.get("productId"), "productId"),
        active_only=request.args.get("active", "").lower() in ("1", "true", "yes"),
    )
    return ok([d.to_dict() for d in discounts])


@discounts_bp.put("/<int:discount_id>")
@require_auth
@require_admin
def update_discount(discount_id: int):
    data = json_body()
    changes = {}
    if "type" in data:
        changes["type"] = require_choice(data["type"], "type", catalog_service.DISCOUNT_TYPES)
    if "value" in data:
        changes["value"] = require_money(data["value"], "value", allow_zero=False)
    try:
        if "startsAt" in data:
            changes["starts_at"] = parse_iso_datetime(data["startsAt"])
        if "endsAt" in data:
            changes["ends_at"] = parse_iso_datetime(data["endsAt"])
    except ValueError:
        raise ValidationError("startsAt/endsAt must be ISO datetimes")
    if "isActive" in data:
        changes["is_active"] = bool(data["isActive"])
    if not changes:
        raise ValidationError("No fields to update")

    discount = catalog_service.update_discount(g.actor.tenant_id, discount_id, **changes)
    return ok(discount.to_dict())


@discounts_bp.delete("/<int:discount_id>")
@require_auth
@require_admin
def delete_discount(discount_id: int):
    """Deactivates; paid sales keep their discounted prices."""
    discount = catalog_service.deactivate_discount(g.actor.tenant_id, discount_id)
    return ok(discount.to_dict())
