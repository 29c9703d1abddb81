from flask import Blueprint, g, request

from ..decorators import require_auth
from ..errors import NotFound
from ..responses import ok
from ..services import notification_service
from .inventory import current_store_id

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications():
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    notes = notification_service.list_notifications(g.actor.tenant_id, current_store_id(), unread_only=unread_only)
    return ok([n.to_dict() for n in notes])


@notifications_bp.post("/<int:notification_id>/read")
@require_auth
def mark_read(notification_id: int):
    note = notification_service.mark_read(g.actor.tenant_id, current_store_id(), notification_id)
    if not note:
        raise NotFound(f"Notification {notification_id} not found")
    return ok(note.to_dict())
