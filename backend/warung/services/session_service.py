# Overview: Bearer session tokens: issue on login, validate per request, revoke on logout.

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from warung.time_utils import utcnow


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _active_session(token: str) -> SessionToken | None:
    return db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()


def create_session(user: User) -> tuple[SessionToken, str]:
    """
    Start a session for `user`.

    Returns (session_record, plaintext_token); only the hash is stored.
    """
    token = secrets.token_hex(32)
    now = utcnow()
    hours = current_app.config.get("SESSION_ABSOLUTE_HOURS", 24)

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=hours),
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> User | None:
    """
    Return the session's User, or None when the token is unknown, revoked,
    expired, idle too long, or belongs to a deactivated user.
    """
    session = _active_session(token)
    if session is None:
        return None

    now = utcnow()
    idle = timedelta(hours=current_app.config.get("SESSION_IDLE_HOURS", 2))
    if session.expires_at < now:
        return None
    if now - session.last_used_at > idle or not session.user.is_active:
        session.is_revoked = True
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return session.user


def revoke_session(token: str) -> bool:
    """Returns False when the token is not an active session."""
    session = _active_session(token)
    if session is None:
        return False
    session.is_revoked = True
    db.session.commit()
    return True
