# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service with Multi-Tenant Support

WHY: Every action must be attributable. Uses bcrypt for password hashing.

MULTI-TENANT: Users belong to exactly one tenant. Email uniqueness is
tenant-scoped, so login may pass a tenant code to disambiguate.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""
from __future__ import annotations

import re

import bcrypt
from flask import current_app

from pharmapos.extensions import db
from pharmapos.errors import NotFound, ValidationError
from pharmapos.models import Tenant, User
from pharmapos.permissions import VALID_ROLES
from pharmapos.time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash with the configured cost."""
    validate_password_strength(password)
    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in DB
        return False


def create_user(tenant_id: int, *, name: str, email: str, password: str, role: str) -> User:
    email = (email or "").strip().lower()
    role = (role or "").strip().upper()
    if not name or not name.strip():
        raise ValidationError("name is required")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(VALID_ROLES)}")
    if not db.session.get(Tenant, tenant_id):
        raise NotFound(f"Tenant {tenant_id} not found")
    if db.session.query(User).filter_by(tenant_id=tenant_id, email=email).first():
        raise ValidationError(f"User {email} already exists")

    user = User(
        tenant_id=tenant_id,
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str, *, tenant_code: str | None = None) -> User | None:
    """
    Return the active user of an active tenant matching email + password, else None.
    """
    email = (email or "").strip().lower()
    if not email or not password:
        return None

    query = (
        db.session.query(User)
        .join(Tenant, Tenant.id == User.tenant_id)
        .filter(User.email == email, User.is_active.is_(True), Tenant.is_active.is_(True))
    )
    if tenant_code:
        query = query.filter(Tenant.code == tenant_code)

    for user in query.order_by(User.id.asc()).all():
        if verify_password(password, user.password_hash):
            user.last_login_at = utcnow()
            db.session.commit()
            return user
    return None


def get_user(tenant_id: int, user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id, tenant_id=tenant_id).first()
    if not user:
        raise NotFound(f"User {user_id} not found")
    return user


def list_users(tenant_id: int) -> list[User]:
    return db.session.query(User).filter_by(tenant_id=tenant_id).order_by(User.name.asc(), User.id.asc()).all()


def update_user(tenant_id: int, user_id: int, **changes) -> User:
    """
    Apply changes to name, email, password, role, is_active.

    A deactivated user fails session validation on the next request.
    """
    allowed = {"name", "email", "password", "role", "is_active"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    user = get_user(tenant_id, user_id)

    if "name" in changes:
        name = (changes["name"] or "").strip()
        if not name:
            raise ValidationError("name is required")
        user.name = name
    if "email" in changes:
        email = (changes["email"] or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        clash = db.session.query(User).filter(
            User.tenant_id == tenant_id, User.email == email, User.id != user.id
        ).first()
        if clash:
            raise ValidationError(f"User {email} already exists")
        user.email = email
    if "role" in changes:
        role = (changes["role"] or "").strip().upper()
        if role not in VALID_ROLES:
            raise ValidationError(f"role must be one of: {', '.join(VALID_ROLES)}")
        user.role = role
    if changes.get("password"):
        user.password_hash = hash_password(changes["password"])
    if "is_active" in changes:
        user.is_active = bool(changes["is_active"])

    db.session.commit()
    current_app.logger.info("user.updated id=%s fields=%s", user.id, ",".join(sorted(changes)))
    return user
