# backend/pharmapos/routes/products.py
from flask import Blueprint, g, request

from ..decorators import require_admin, require_auth
from ..errors import ValidationError
from ..responses import json_body, ok
from ..services import catalog_service
from ..time_utils import parse_iso_datetime
from ..validation import optional_money, optional_text, require_choice, require_money, require_text

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    include_inactive = request.args.get("includeInactive", "").lower() in ("1", "true", "yes")
    products = catalog_service.list_products(
        g.actor.tenant_id,
        search=request.args.get("search"),
        include_inactive=include_inactive,
    )
    return ok([p.to_dict() for p in products])


@products_bp.post("")
@require_auth
@require_admin
def create_product():
    """
    Request body:
    {
        "name": str,
        "price": number,
        "ean": str (optional),
        "requiresPrescription": bool (optional)
    }
    """
    data = json_body()
    product = catalog_service.create_product(
        g.actor.tenant_id,
        name=require_text(data.get("name"), "name"),
        price=optional_money(data.get("price"), "price"),
        ean=optional_text(data.get("ean"), "ean", max_length=32),
        requires_prescription=bool(data.get("requiresPrescription", False)),
    )
    return ok(product.to_dict(), 201)


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product(product_id: int):
    data = json_body()
    changes = {}
    if "name" in data:
        changes["name"] = require_text(data["name"], "name")
    if "ean" in data:
        changes["ean"] = optional_text(data["ean"], "ean", max_length=32)
    if "price" in data:
        changes["price"] = optional_money(data["price"], "price")
    if "requiresPrescription" in data:
        changes["requires_prescription"] = bool(data["requiresPrescription"])
    if "isActive" in data:
        changes["is_active"] = bool(data["isActive"])
    if not changes:
        raise ValidationError("No fields to update")

    product = catalog_service.update_product(g.actor.tenant_id, product_id, **changes)
    return ok(product.to_dict())


@products_bp.post("/<int:product_id>/discounts")
@require_auth
@require_admin
def create_discount(product_id: int):
    """
    Request body:
    {
        "type": "PERCENT" | "FIXED",
        "value": number,
        "startsAt": ISO datetime (optional, default now),
        "endsAt": ISO datetime (optional)
    }
    """
    data = json_body()
    try:
        starts_at = parse_iso_datetime(data.get("startsAt"))
        ends_at = parse_iso_datetime(data.get("endsAt"))
    except ValueError:
        raise ValidationError("startsAt/endsAt must be ISO datetimes")

    discount = catalog_service.create_discount(
        g.actor.tenant_id,
        product_id,
        type=require_choice(data.get("type"), "type", catalog_service.DISCOUNT_TYPES),
        value=require_money(data.get("value"), "value", allow_zero=False),
        starts_at=starts_at,
        ends_at=ends_at,
    )
    return ok(discount.to_dict(), 201)
