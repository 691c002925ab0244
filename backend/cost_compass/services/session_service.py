# Overview: Service-layer bearer sessions; issue, resolve, revoke and purge login tokens.

"""
Bearer session tokens.

A login issues a random token; only its SHA-256 digest is stored. A
session ends when it is revoked, passes its absolute lifetime, sits idle
past the idle limit, or its user is deactivated. Both limits come from
app config (SESSION_ABSOLUTE_HOURS, SESSION_IDLE_MINUTES).

Revocation never deletes the row: revoked_at and revoked_reason stay for
the audit trail until cleanup_expired_sessions purges old rows.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import as_naive_utc, is_expired, utcnow


logger = logging.getLogger(__name__)

DEFAULT_ABSOLUTE_HOURS = 24
DEFAULT_IDLE_MINUTES = 120
PURGE_AFTER = timedelta(days=30)


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def _absolute_lifetime() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_HOURS", DEFAULT_ABSOLUTE_HOURS))


def _idle_limit() -> timedelta:
    return timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", DEFAULT_IDLE_MINUTES))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens carry 256 bits of entropy, so a fast digest is enough
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def _mark_revoked(session: SessionToken, reason: str, now=None) -> None:
    session.is_revoked = True
    session.revoked_at = now or utcnow()
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for an active user.

    Returns (session_row, plaintext_token). The plaintext is never stored.
    Raises ValueError for a missing or deactivated user.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is deactivated")

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_lifetime(),
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user, or None.

    Idle sessions and sessions of deactivated users are revoked here so a
    later reactivation does not bring old tokens back. A live session has
    its last_used_at bumped.
    """
    session = _live_session(token)
    if session is None:
        return None

    now = utcnow()
    if is_expired(session.expires_at, now):
        return None

    reason = None
    if now - as_naive_utc(session.last_used_at) > _idle_limit():
        reason = "Idle timeout"
    elif session.user is None or not session.user.is_active:
        reason = "User account deactivated"

    if reason:
        _mark_revoked(session, reason, now)
        db.session.commit()
        logger.info("Session revoked on use", extra={"session_id": session.id, "reason": reason})
        return None

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=session.user, session=session)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """False when the token was unknown or already revoked."""
    session = _live_session(token)
    if session is None:
        return False
    _mark_revoked(session, reason)
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions", commit: bool = True) -> int:
    """
    Revoke every live session of a user; returns how many.

    commit=False leaves the change in the caller's transaction so it lands
    together with the role or status change that caused it.
    """
    now = utcnow()
    sessions = (
        db.session.query(SessionToken)
        .filter(SessionToken.user_id == user_id, SessionToken.is_revoked.is_(False))
        .all()
    )
    for session in sessions:
        _mark_revoked(session, reason, now)
    if commit:
        db.session.commit()
    return len(sessions)


def cleanup_expired_sessions(now=None) -> int:
    """Delete expired or revoked sessions created more than 30 days ago."""
    now = now or utcnow()
    deleted = (
        db.session.query(SessionToken)
        .filter(
            db.or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True)),
            SessionToken.created_at < now - PURGE_AFTER,
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
