from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StoreNotification(db.Model):
    """
    Message posted to a store's inbox when a counterpart store acts on a
    shared transfer or reservation. Best effort: never required for the
    workflow itself to succeed.
    """
    __tablename__ = "store_notifications"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    kind = db.Column(db.String(48), nullable=False)
    message = db.Column(db.Text, nullable=False)
    ref_type = db.Column(db.String(32), nullable=True)
    ref_id = db.Column(db.Integer, nullable=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "storeId": self.store_id,
            "kind": self.kind,
            "message": self.message,
            "refType": self.ref_type,
            "refId": self.ref_id,
            "createdAt": to_utc_z(self.created_at),
            "readAt": to_utc_z(self.read_at),
        }
