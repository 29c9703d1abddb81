# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

WHY: Opaque bearer tokens, hashed in the database, time-limited and revocable.

MULTI-TENANT: Sessions capture tenant_id at creation time; the tenant
context is immutable for the session lifetime.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout from SESSION_TTL_HOURS
- Revocable on logout
"""
from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """Authenticated user plus the immutable tenant context of the session."""
    user: User
    session: SessionToken
    tenant_id: int


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    """
    SHA-256 of the token.

    WHY SHA-256 not bcrypt: tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user: User, *, user_agent: str | None = None, ip_address: str | None = None) -> tuple[SessionToken, str]:
    """Returns (session_record, plaintext_token). Only the hash is stored."""
    plaintext_token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=int(current_app.config.get("SESSION_TTL_HOURS", 24)))

    session = SessionToken(
        user_id=user.id,
        tenant_id=user.tenant_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + ttl,
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    SessionContext for a valid token, else None.

    Invalid means: unknown, revoked, expired, or the user was deactivated.
    """
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token), is_revoked=False).first()
    if not session:
        return None

    if session.expires_at < utcnow():
        return None

    user = session.user
    if not user or not user.is_active or user.tenant_id != session.tenant_id:
        return None

    return SessionContext(user=user, session=session, tenant_id=session.tenant_id)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
