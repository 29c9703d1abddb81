from flask import Blueprint, g, request

from ..decorators import require_auth
from ..responses import json_body, ok
from ..services import catalog_service, sales_service
from ..time_utils import to_utc_z
from ..validation import optional_text, require_text

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")

RECENT_PURCHASES = 10


def _purchase_dict(sale) -> dict:
    return {
        "saleId": sale.id,
        "saleNumber": sale.number,
        "storeId": sale.store_id,
        "paidAt": to_utc_z(sale.paid_at),
        "total": float(sale.total),
        "items": [
            {
                "productId": item.product_id,
                "productName": item.product.name if item.product else None,
                "quantity": item.quantity,
                "priceUnit": float(item.price_unit),
            }
            for item in sale.items
        ],
    }


@customers_bp.get("")
@require_auth
def list_customers():
    customers = catalog_service.list_customers(g.actor.tenant_id, search=request.args.get("search"))
    return ok([c.to_dict() for c in customers])


@customers_bp.post("")
@require_auth
def create_customer():
    data = json_body()
    customer = catalog_service.create_customer(
        g.actor.tenant_id,
        name=require_text(data.get("name"), "name"),
        document=optional_text(data.get("document"), "document", max_length=32),
        phone=optional_text(data.get("phone"), "phone", max_length=32),
    )
    return ok(customer.to_dict(), 201)


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer(customer_id: int):
    """Customer with their last paid sales."""
    customer = catalog_service.get_customer(g.actor.tenant_id, customer_id)
    recent = sales_service.list_customer_purchases(g.actor.tenant_id, customer.id, limit=RECENT_PURCHASES)
    data = customer.to_dict()
    data["recentPurchases"] = [_purchase_dict(s) for s in recent]
    return ok(data)


@customers_bp.get("/<int:customer_id>/purchases")
@require_auth
def list_purchases(customer_id: int):
    customer = catalog_service.get_customer(g.actor.tenant_id, customer_id)
    sales = sales_service.list_customer_purchases(g.actor.tenant_id, customer.id)
    return ok([_purchase_dict(s) for s in sales])
