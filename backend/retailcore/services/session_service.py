# Overview: Opaque bearer sessions carrying the actor's tenant context.

"""
Session Token Service

WHY: The checkout engine does not own credentials. The identity
integration (or the CLI) issues an opaque session for a user; requests
present it as a Bearer token and get back the user plus the tenant the
session was issued for.

SECURITY FEATURES:
- 32 random bytes per token (secrets.token_hex)
- Only the SHA-256 hash is stored
- 24-hour absolute timeout, 2-hour idle timeout
- Revocable; deactivated users and tenants invalidate their sessions
- tenant_id is captured at creation and never changes
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, Tenant, User
from ..time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """Result of validate_session. tenant_id comes from the session row."""
    user: User
    session: SessionToken
    tenant_id: int


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Issue a session for an active user of an active tenant.

    Returns (session_record, plaintext_token). Only the hash is persisted.
    Raises ValueError for unknown users or inactive tenants.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    tenant = db.session.get(Tenant, user.tenant_id)
    if not tenant or not tenant.is_active:
        raise ValueError("Tenant is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        tenant_id=user.tenant_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Return the SessionContext for a live token, or None.

    Idle sessions, deactivated users and deactivated tenants revoke the
    session as a side effect. Refreshes last_used_at otherwise.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    if not session.tenant or not session.tenant.is_active:
        _revoke(session, "Tenant deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, tenant_id=session.tenant_id)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke a live session. Returns False if the token is unknown or already revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False

    _revoke(session, reason)
    return True
