# Overview: Service-layer operations for bearer sessions; issue, validate and revoke tokens.

"""
Session Token Management

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout of SESSION_TTL_HOURS
- Revocable on logout
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..formatting import utcnow
from ..models import SessionToken, User


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Tokens are high-entropy, so SHA-256 (not bcrypt) is enough."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token).
    The client receives the plaintext token; only its hash is stored.
    """
    plaintext_token = generate_token()
    now = utcnow()
    ttl_hours = current_app.config.get("SESSION_TTL_HOURS", 24)

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Returns None if the token is unknown, expired or revoked, or the user
    is deactivated.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return None

    if session.expires_at <= utcnow():
        revoke_session(token, reason="EXPIRED")
        return None

    user = db.session.get(User, session.user_id)
    if user is None or not user.is_active:
        return None

    return SessionContext(user=user, session=session)


def revoke_session(token: str, reason: str = "LOGOUT") -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False

    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()
    return True
