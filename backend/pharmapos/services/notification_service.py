# Overview: Best-effort store inbox notifications for cross-store workflows.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from pharmapos.extensions import db
from pharmapos.models import StoreNotification
from pharmapos.time_utils import utcnow


def notify_store(
    *,
    tenant_id: int,
    store_id: int,
    kind: str,
    message: str,
    ref_type: str | None = None,
    ref_id: int | None = None,
    actor_id: int | None = None,
) -> StoreNotification | None:
    """
    Post a message to a store's inbox.

    Non-critical side effect: written in a SAVEPOINT so a failure rolls back
    only the notification, is logged, and never fails the parent workflow.
    """
    try:
        with db.session.begin_nested():
            note = StoreNotification(
                tenant_id=tenant_id,
                store_id=store_id,
                kind=kind,
                message=message,
                ref_type=ref_type,
                ref_id=ref_id,
                created_by_id=actor_id,
            )
            db.session.add(note)
        return note
    except SQLAlchemyError:
        current_app.logger.warning(
            "notification.failed kind=%s store=%s ref=%s:%s", kind, store_id, ref_type, ref_id, exc_info=True
        )
        return None


def list_notifications(tenant_id: int, store_id: int, *, unread_only: bool = False, limit: int = 50) -> list[StoreNotification]:
    query = db.session.query(StoreNotification).filter_by(tenant_id=tenant_id, store_id=store_id)
    if unread_only:
        query = query.filter(StoreNotification.read_at.is_(None))
    return query.order_by(StoreNotification.id.desc()).limit(limit).all()


def mark_read(tenant_id: int, store_id: int, notification_id: int) -> StoreNotification | None:
    note = db.session.query(StoreNotification).filter_by(
        id=notification_id, tenant_id=tenant_id, store_id=store_id
    ).first()
    if note and note.read_at is None:
        note.read_at = utcnow()
        db.session.commit()
    return note
