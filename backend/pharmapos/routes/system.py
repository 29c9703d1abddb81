# Overview: Liveness endpoint.

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..responses import ok

system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.get("/health")
def health():
    """Unauthenticated liveness check including a trivial database round trip."""
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        current_app.logger.exception("health.database_unreachable")
        db.session.rollback()
        database = "unreachable"
    return ok({"status": "ok", "database": database}, 200 if database == "ok" else 503)
