# backend/pharmapos/routes/sales.py
from flask import Blueprint, g, request

from ..decorators import require_auth
from ..responses import json_body, ok
from ..services import sales_service
from ..validation import optional_int, optional_text, require_choice, require_int, require_positive_int

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
def list_sales():
    limit = optional_int(request.args.get("limit"), "limit") or 50
    sales = sales_service.list_sales(g.actor, status=request.args.get("status"), limit=limit)
    return ok([s.to_dict() for s in sales])


@sales_bp.post("")
@require_auth
def create_sale():
    data = json_body()
    sale = sales_service.create_sale(g.actor, customer_id=optional_int(data.get("customerId"), "customerId"))
    return ok(sale.to_dict(), 201)


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale(sale_id: int):
    return ok(sales_service.get_sale(g.actor, sale_id).to_dict())


@sales_bp.delete("/<int:sale_id>")
@require_auth
def delete_sale(sale_id: int):
    """Permanently delete a DRAFT sale."""
    sales_service.delete_draft(g.actor, sale_id)
    return ok({"deleted": True})


@sales_bp.post("/<int:sale_id>/items")
@require_auth
def add_item(sale_id: int):
    """
    Request body:
    {
        "productId": int,
        "quantity": int
    }

    Returns:
        200: Updated sale
        400: Insufficient stock (details carry available/requested)
        409: Sale not open
    """
    data = json_body()
    sale = sales_service.add_item(
        g.actor,
        sale_id,
        product_id=require_int(data.get("productId"), "productId"),
        quantity=require_positive_int(data.get("quantity"), "quantity"),
    )
    return ok(sale.to_dict())


@sales_bp.put("/<int:sale_id>/items/<int:item_id>")
@require_auth
def update_item(sale_id: int, item_id: int):
    data = json_body()
    sale = sales_service.update_item_quantity(
        g.actor, sale_id, item_id, quantity=require_positive_int(data.get("quantity"), "quantity")
    )
    return ok(sale.to_dict())


@sales_bp.delete("/<int:sale_id>/items/<int:item_id>")
@require_auth
def remove_item(sale_id: int, item_id: int):
    return ok(sales_service.remove_item(g.actor, sale_id, item_id).to_dict())


@sales_bp.post("/<int:sale_id>/confirm")
@require_auth
def confirm_sale(sale_id: int):
    return ok(sales_service.confirm_sale(g.actor, sale_id).to_dict())


@sales_bp.post("/<int:sale_id>/pay")
@require_auth
def pay_sale(sale_id: int):
    """
    Request body:
    {
        "method": "CASH" | "PIX" | "CREDIT_CARD" | "DEBIT_CARD"
    }

    Returns:
        200: Sale PAID with COGS per item
        400: No open cash session / insufficient stock
        409: Sale not payable in its status
    """
    data = json_body()
    method = require_choice(data.get("method"), "method", sales_service.PAYMENT_METHODS)
    return ok(sales_service.pay_sale(g.actor, sale_id, method=method).to_dict())


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
def cancel_sale(sale_id: int):
    data = json_body()
    sale = sales_service.cancel_sale(g.actor, sale_id, optional_text(data.get("reason"), "reason"))
    return ok(sale.to_dict())
