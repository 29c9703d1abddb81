from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _money(value):
    return float(value) if value is not None else None


class Product(db.Model):
    """
    Product master data (tenant-wide; stock lives in per-store lots).

    price is the current list price; discounts are applied at sale time.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "ean", name="uq_products_tenant_ean"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    ean = db.Column(db.String(32), nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=True)
    requires_prescription = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "ean": self.ean,
            "price": _money(self.price),
            "requiresPrescription": self.requires_prescription,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class Discount(db.Model):
    """
    Time-boxed product discount.

    TYPE: PERCENT (value is a percentage) or FIXED (value is subtracted).
    The newest active discount whose window contains "now" wins.
    """
    __tablename__ = "discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("discounts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "type": self.type,
            "value": _money(self.value),
            "startsAt": to_utc_z(self.starts_at),
            "endsAt": to_utc_z(self.ends_at),
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    document = db.Column(db.String(32), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "document": self.document,
            "phone": self.phone,
            "createdAt": to_utc_z(self.created_at),
        }
