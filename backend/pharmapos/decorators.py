# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, request

from .errors import AuthenticationError, Forbidden, ValidationError
from .permissions import Actor, assert_elevated
from .services import licensing_service, session_service, store_service


def _requested_store_id() -> int | None:
    raw = request.headers.get("X-Store-Id")
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        raise ValidationError("X-Store-Id must be an integer")


def require_auth(f):
    """
    Require authentication and establish tenant + store context.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.tenant_id: The tenant of the session
    - g.actor: Actor(id, role, tenant_id, store_id) handed to services
    - g.session_context: The full SessionContext object

    The current store comes from X-Store-Id (checked against the user's
    stores unless admin) or falls back to the user's default store.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise AuthenticationError("Authentication required")

        token = auth_header.split(" ", 1)[1].strip()
        context = session_service.validate_session(token)
        if not context:
            raise AuthenticationError("Invalid or expired token")

        user = context.user
        store_id = store_service.resolve_store_id(user, _requested_store_id())

        g.current_user = user
        g.tenant_id = context.tenant_id
        g.session_context = context
        g.token = token
        g.actor = Actor(id=user.id, role=user.role, tenant_id=context.tenant_id, store_id=store_id)

        return f(*args, **kwargs)

    return decorated_function


def require_elevated(f):
    """Pharmacist or admin only. Must be applied after require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        assert_elevated(g.actor)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.actor.is_admin:
            raise Forbidden("Admin role required")
        return f(*args, **kwargs)

    return decorated_function


def require_feature(feature_key: str):
    """
    Reject with 403 FEATURE_DISABLED unless the tenant's license enables the feature.

    Must be applied after require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            licensing_service.assert_feature_enabled(g.actor.tenant_id, feature_key)
            return f(*args, **kwargs)

        return decorated_function

    return decorator
