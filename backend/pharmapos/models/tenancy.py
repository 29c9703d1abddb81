from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every pharmacy chain is a Tenant.

    DESIGN:
    - Stores, users, products and customers belong to exactly one tenant
    - All queries must be scoped by tenant_id (directly or via store)
    - No data may cross tenant boundaries
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class Store(db.Model):
    """
    Physical pharmacy store within a tenant.

    Store names and codes are unique within a tenant, not globally.
    Exactly one store per tenant may be flagged is_default (admin fallback
    when no X-Store-Id header is sent).
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_stores_tenant_name"),
        db.UniqueConstraint("tenant_id", "code", name="uq_stores_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("stores", lazy=True))

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "code": self.code,
            "isActive": self.is_active,
            "isDefault": self.is_default,
            "createdAt": to_utc_z(self.created_at),
        }


class StoreUser(db.Model):
    """
    Which stores a user works in.

    Admins see every active store of their tenant and need no rows here.
    """
    __tablename__ = "store_users"
    __table_args__ = (
        db.UniqueConstraint("user_id", "store_id", name="uq_store_users_user_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User", backref=db.backref("store_links", lazy=True))
    store = db.relationship("Store", backref=db.backref("user_links", lazy=True))


class TenantLicense(db.Model):
    """
    License of a tenant: a plan from the catalog plus optional overrides.

    STATUS: TRIAL, ACTIVE, GRACE (usable) / SUSPENDED, EXPIRED, CANCELED (blocked).
    """
    __tablename__ = "tenant_licenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, unique=True, index=True)
    plan_code = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    # Per-tenant feature overrides on top of the plan, e.g. {"inventoryReservations": false}
    feature_overrides = db.Column(db.JSON, nullable=True)

    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("license", uselist=False))
