from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockTransfer(db.Model):
    """
    Inter-store stock transfer, requested by the destination store.

    LIFECYCLE:
    1. DRAFT: created by the destination store with the requested items
    2. SENT: origin store shipped (FEFO TRANSFER_OUT movements at origin)
    3. RECEIVED: destination store received (lot upserts + TRANSFER_IN movements)
    4. CANCELED: only from DRAFT

    SENT and RECEIVED are one-way doors: mistakes after shipping are fixed
    with compensating adjustments, never by cancelling.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.Index("ix_stock_transfers_origin_status", "origin_store_id", "status"),
        db.Index("ix_stock_transfers_destination_status", "destination_store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    origin_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    destination_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sent_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    canceled_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    origin_store = db.relationship("Store", foreign_keys=[origin_store_id])
    destination_store = db.relationship("Store", foreign_keys=[destination_store_id])
    items = db.relationship(
        "StockTransferItem",
        backref="transfer",
        lazy=True,
        order_by="StockTransferItem.id",
    )
    movements = db.relationship(
        "InventoryMovement",
        backref="transfer",
        lazy=True,
        order_by="InventoryMovement.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "originStoreId": self.origin_store_id,
            "destinationStoreId": self.destination_store_id,
            "originStore": {"id": self.origin_store.id, "name": self.origin_store.name} if self.origin_store else None,
            "destinationStore": {"id": self.destination_store.id, "name": self.destination_store.name} if self.destination_store else None,
            "status": self.status,
            "note": self.note,
            "createdAt": to_utc_z(self.created_at),
            "sentAt": to_utc_z(self.sent_at),
            "receivedAt": to_utc_z(self.received_at),
            "canceledAt": to_utc_z(self.canceled_at),
            "createdById": self.created_by_id,
            "sentById": self.sent_by_id,
            "receivedById": self.received_by_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class StockTransferItem(db.Model):
    __tablename__ = "stock_transfer_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Requested by the destination store
    quantity = db.Column(db.Integer, nullable=False)
    # Actually shipped by the origin store (set on send, may be less than quantity)
    quantity_sent = db.Column(db.Integer, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "product": {"id": self.product.id, "name": self.product.name} if self.product else None,
            "quantity": self.quantity,
            "quantitySent": self.quantity_sent,
        }


class StockReservation(db.Model):
    """
    Cross-store stock hold.

    LIFECYCLE:
    - REQUESTED -> APPROVED -> FULFILLED
    - REQUESTED -> REJECTED (reason mandatory)
    - REQUESTED | APPROVED -> CANCELED

    Only APPROVED reservations reduce availability at the source store.
    A reservation never moves inventory itself.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.Index("ix_stock_reservations_source_status", "source_store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    request_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    source_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="REQUESTED", index=True)
    note = db.Column(db.Text, nullable=True)
    reject_reason = db.Column(db.Text, nullable=True)

    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    request_store = db.relationship("Store", foreign_keys=[request_store_id])
    source_store = db.relationship("Store", foreign_keys=[source_store_id])
    customer = db.relationship("Customer")
    items = db.relationship(
        "StockReservationItem",
        backref="reservation",
        lazy=True,
        order_by="StockReservationItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requestStoreId": self.request_store_id,
            "sourceStoreId": self.source_store_id,
            "requestStore": {"id": self.request_store.id, "name": self.request_store.name} if self.request_store else None,
            "sourceStore": {"id": self.source_store.id, "name": self.source_store.name} if self.source_store else None,
            "customer": {"id": self.customer.id, "name": self.customer.name} if self.customer else None,
            "status": self.status,
            "note": self.note,
            "rejectReason": self.reject_reason,
            "requestedById": self.requested_by_id,
            "reviewedById": self.reviewed_by_id,
            "createdAt": to_utc_z(self.created_at),
            "reviewedAt": to_utc_z(self.reviewed_at),
            "canceledAt": to_utc_z(self.canceled_at),
            "fulfilledAt": to_utc_z(self.fulfilled_at),
            "items": [item.to_dict() for item in self.items],
        }


class StockReservationItem(db.Model):
    __tablename__ = "stock_reservation_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("stock_reservations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    # 0 until the reservation is APPROVED, then equal to quantity
    reserved_qty = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "product": {"id": self.product.id, "name": self.product.name} if self.product else None,
            "quantity": self.quantity,
            "reservedQty": self.reserved_qty,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-store document sequences.

    WHY: Prevent race conditions when generating sale numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_type", name="uq_doc_sequences_store_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class AuditEvent(db.Model):
    """
    Append-only audit trail of workflow transitions.

    Written in the same DB transaction as the change it records.
    No updates, no deletes.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "eventType": self.event_type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "actorUserId": self.actor_user_id,
            "note": self.note,
            "payload": self.payload,
            "occurredAt": to_utc_z(self.occurred_at),
        }
