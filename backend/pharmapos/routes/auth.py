# backend/pharmapos/routes/auth.py
from flask import Blueprint, current_app, g, request

from ..decorators import require_auth
from ..errors import AuthenticationError, ValidationError
from ..responses import json_body, ok
from ..services import auth_service, session_service, store_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login():
    """
    Authenticate and open a session.

    Request body:
    {
        "email": str,
        "password": str,
        "tenantCode": str (optional, when the email exists in several tenants)
    }

    Returns:
        200: {token, user, stores}
        400: Missing credentials
        401: Invalid credentials
    """
    data = json_body()
    email = data.get("email")
    password = data.get("password")
    if not email or not password:
        raise ValidationError("email and password are required")

    user = auth_service.authenticate(email, password, tenant_code=data.get("tenantCode"))
    if not user:
        current_app.logger.info("auth.login_failed email=%s ip=%s", email, request.remote_addr)
        raise AuthenticationError("Invalid credentials")

    _, token = session_service.create_session(
        user,
        user_agent=request.headers.get("User-Agent"),
        ip_address=request.remote_addr,
    )
    stores = store_service.list_stores_for_user(user)
    current_app.logger.info("auth.login user=%s tenant=%s", user.id, user.tenant_id)
    return ok({
        "token": token,
        "user": user.to_dict(),
        "stores": [s.to_dict() for s in stores],
    })


@auth_bp.post("/logout")
@require_auth
def logout():
    session_service.revoke_session(g.token)
    return ok({"loggedOut": True})


@auth_bp.get("/me")
@require_auth
def me():
    user = g.current_user
    return ok({
        "user": user.to_dict(),
        "currentStoreId": g.actor.store_id,
        "stores": [s.to_dict() for s in store_service.list_stores_for_user(user)],
    })
