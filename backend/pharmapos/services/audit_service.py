# Overview: Service-layer operations for the audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import AuditEvent
"""
Audit trail invariants (authoritative)

- Append-only log of workflow transitions.
- No domain/business logic in the audit log itself.
- Events are written inside the same DB transaction as the change they record.
"""


def append_audit_event(
    *,
    tenant_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    store_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No domain logic here.
    - No deletes/updates of existing events.
    """
    ev = AuditEvent(
        tenant_id=tenant_id,
        store_id=store_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(*, tenant_id: int, entity_type: str, entity_id: int) -> list[AuditEvent]:
    return (
        db.session.query(AuditEvent)
        .filter_by(tenant_id=tenant_id, entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditEvent.id.asc())
        .all()
    )
