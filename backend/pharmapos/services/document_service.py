# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..errors import ValidationError
from ..models import DocumentSequence


def next_document_number(
    *,
    store_id: int,
    document_type: str,
    prefix: str = "",
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a store/type.

    The UPDATE takes the row lock on (store_id, document_type) until the
    caller's transaction ends; no commit here. First use creates the row.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(store_id=store_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}{str(next_num).zfill(pad)}"
