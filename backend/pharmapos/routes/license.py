from flask import Blueprint, g

from ..decorators import require_auth
from ..responses import ok
from ..services import licensing_service

license_bp = Blueprint("license", __name__, url_prefix="/api/license")


@license_bp.get("")
@require_auth
def current_license():
    data = licensing_service.get_effective_license(g.actor.tenant_id)
    data["usage"] = licensing_service.usage(g.actor.tenant_id)
    return ok(data)
