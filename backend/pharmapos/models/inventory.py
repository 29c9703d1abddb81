from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date

"""
Ledger Store invariants (authoritative)

- A lot is identified by (store_id, product_id, lot_number, expiration).
- InventoryLot.quantity >= 0 at all times.
- Lots are never deleted; a lot whose quantity reaches 0 is retired
  (is_active=False) and kept for audit history. Receiving into it again
  reactivates it.
- InventoryMovement is append-only. Its quantity is always positive; the
  sign comes from the type (see MOVEMENT_SIGNS).
- For every lot: SUM(sign(type) * quantity) over its movements == lot.quantity.
  Enforced by inventory_service.assert_lots_balanced() inside every mutating
  transaction.
"""

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUST_POS = "ADJUST_POS"
MOVEMENT_ADJUST_NEG = "ADJUST_NEG"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"

MOVEMENT_SIGNS = {
    MOVEMENT_IN: 1,
    MOVEMENT_ADJUST_POS: 1,
    MOVEMENT_TRANSFER_IN: 1,
    MOVEMENT_OUT: -1,
    MOVEMENT_ADJUST_NEG: -1,
    MOVEMENT_TRANSFER_OUT: -1,
}

MOVEMENT_TYPES = tuple(MOVEMENT_SIGNS)


class InventoryLot(db.Model):
    """
    Stock of one product batch in one store.

    CONCURRENCY: version_id is an optimistic lock; a concurrent writer that
    loaded an older version fails with StaleDataError and is retried.
    """
    __tablename__ = "inventory_lots"
    __table_args__ = (
        db.UniqueConstraint(
            "store_id", "product_id", "lot_number", "expiration",
            name="uq_inventory_lots_store_product_lot_exp",
        ),
        # FEFO scan: active lots of a product in a store, by expiration
        db.Index("ix_inventory_lots_fefo", "store_id", "product_id", "is_active", "expiration"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    lot_number = db.Column(db.String(64), nullable=False)
    # Null for products without shelf life; sorted after every dated lot
    expiration = db.Column(db.Date, nullable=True)

    cost_unit = db.Column(db.Numeric(12, 4), nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store")
    product = db.relationship("Product", backref=db.backref("lots", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryLot id={self.id} store_id={self.store_id} product_id={self.product_id} "
            f"lot={self.lot_number!r} exp={self.expiration} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "productId": self.product_id,
            "lotNumber": self.lot_number,
            "expiration": to_iso_date(self.expiration),
            "costUnit": float(self.cost_unit) if self.cost_unit is not None else None,
            "quantity": self.quantity,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class InventoryMovement(db.Model):
    """
    Immutable stock movement against one lot.

    Links to the originating sale or transfer when there is one.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_store_product", "store_id", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("inventory_lots.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=True, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lot = db.relationship("InventoryLot", backref=db.backref("movements", lazy=True))

    @property
    def signed_quantity(self) -> int:
        return MOVEMENT_SIGNS[self.type] * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "productId": self.product_id,
            "lotId": self.lot_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "saleId": self.sale_id,
            "transferId": self.transfer_id,
            "createdById": self.created_by_id,
            "createdAt": to_utc_z(self.created_at),
        }
