from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _money(value):
    return float(value) if value is not None else None


class Sale(db.Model):
    """
    Point-of-sale document.

    LIFECYCLE:
    - DRAFT: items being added (availability checked per item)
    - CONFIRMED: basket closed, waiting for payment
    - PAID: stock consumed FEFO, COGS recorded, payment + cash movement written
    - CANCELED: from DRAFT or CONFIRMED (reason required from CONFIRMED)

    Sale numbers are unique per store (DocumentSequence).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "number", name="uq_sales_store_number"),
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    number = db.Column(db.String(16), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    channel = db.Column(db.String(16), nullable=False, default="COUNTER")

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    cancel_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    items = db.relationship("SaleItem", backref="sale", lazy=True, order_by="SaleItem.id")
    payments = db.relationship("Payment", backref="sale", lazy=True, order_by="Payment.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "number": self.number,
            "status": self.status,
            "channel": self.channel,
            "sellerId": self.seller_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "total": _money(self.total),
            "discount": _money(self.discount),
            "cancelReason": self.cancel_reason,
            "createdAt": to_utc_z(self.created_at),
            "paidAt": to_utc_z(self.paid_at),
            "items": [item.to_dict() for item in self.items],
            "payments": [payment.to_dict() for payment in self.payments],
        }


class SaleItem(db.Model):
    """
    Line of a sale.

    cogs_unit / cogs_total are written at payment time from the lots the
    FEFO engine actually consumed (weighted cost), for margin reporting.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_unit = db.Column(db.Numeric(12, 2), nullable=False)
    # List price before discount; null when no discount applied
    price_original = db.Column(db.Numeric(12, 2), nullable=True)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    cogs_unit = db.Column(db.Numeric(12, 4), nullable=True)
    cogs_total = db.Column(db.Numeric(12, 2), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "product": {"id": self.product.id, "name": self.product.name} if self.product else None,
            "quantity": self.quantity,
            "priceUnit": _money(self.price_unit),
            "priceOriginal": _money(self.price_original),
            "subtotal": _money(self.subtotal),
            "cogsUnit": _money(self.cogs_unit),
            "cogsTotal": _money(self.cogs_total),
        }


class Payment(db.Model):
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "saleId": self.sale_id,
            "method": self.method,
            "amount": _money(self.amount),
            "createdAt": to_utc_z(self.created_at),
        }
