from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _money(value):
    return float(value) if value is not None else None


class CashSession(db.Model):
    """
    Cash register session of a store.

    LIFECYCLE: open (closed_at is NULL) -> closed. One open session per store.
    IMMUTABLE: once closed, a session cannot be reopened or modified.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index("ix_cash_sessions_store_closed", "store_id", "closed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    opened_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    initial_cash = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_cash = db.Column(db.Numeric(12, 2), nullable=True)
    expected_cash = db.Column(db.Numeric(12, 2), nullable=True)
    divergence = db.Column(db.Numeric(12, 2), nullable=True)
    note = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    movements = db.relationship("CashMovement", backref="session", lazy=True, order_by="CashMovement.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def to_dict(self, *, include_movements: bool = False) -> dict:
        data = {
            "id": self.id,
            "storeId": self.store_id,
            "openedById": self.opened_by_id,
            "closedById": self.closed_by_id,
            "initialCash": _money(self.initial_cash),
            "finalCash": _money(self.final_cash),
            "expected": _money(self.expected_cash),
            "divergence": _money(self.divergence),
            "note": self.note,
            "openedAt": to_utc_z(self.opened_at),
            "closedAt": to_utc_z(self.closed_at),
        }
        if include_movements:
            data["movements"] = [m.to_dict() for m in self.movements]
        return data


class CashMovement(db.Model):
    """
    Cash drawer ledger line.

    TYPES:
    - RECEIPT: payment received for a sale (any method)
    - SUPPLY: cash added to the drawer
    - WITHDRAWAL: cash removed from the drawer (reason required)
    - REFUND: money returned to a customer
    - ADJUSTMENT: manual correction (reason required)
    """
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    method = db.Column(db.String(16), nullable=False, default="CASH")
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    ref_type = db.Column(db.String(16), nullable=True)
    ref_id = db.Column(db.Integer, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "type": self.type,
            "method": self.method,
            "amount": _money(self.amount),
            "reason": self.reason,
            "refType": self.ref_type,
            "refId": self.ref_id,
            "createdAt": to_utc_z(self.created_at),
        }
