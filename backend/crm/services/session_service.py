# Overview: Service-layer operations for staff sessions; opaque bearer tokens with absolute and idle expiry.

"""
Staff sessions

Every call into the allocation API carries "Authorization: Bearer <token>".
The token is 32 random bytes shown to the client once; only its SHA-256
digest is stored. A session ends when:
- SESSION_ABSOLUTE_HOURS have passed since login
- the token sat unused longer than SESSION_IDLE_MINUTES
- the user logs out, or the account is deactivated or deleted
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..errors import BusinessRuleError, NotFoundError
from ..extensions import db
from ..models import SessionToken, User
from ..permissions import Role
from crm.time_utils import utcnow


@dataclass
class SessionContext:
    """Caller identity attached to g by require_auth."""
    user: User
    session: SessionToken

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def role(self) -> Role:
        return self.user.role_enum


def absolute_timeout() -> timedelta:
    return timedelta(hours=int(current_app.config.get("SESSION_ABSOLUTE_HOURS", 24)))


def idle_timeout() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("SESSION_IDLE_MINUTES", 120)))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens carry 256 bits of entropy, so a fast digest is enough
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """Open a session and commit it. Returns (row, plaintext token)."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("사용자를 찾을 수 없습니다.")
    if not user.is_active:
        raise BusinessRuleError("비활성화된 계정입니다.", status_code=403)

    token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + absolute_timeout(),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def _active(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its caller, or None.

    Idle-expired sessions and sessions of deactivated accounts are revoked
    on the way out. A successful lookup refreshes last_used_at.
    """
    session = _active(token)
    if session is None:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    user = session.user
    if now - session.last_used_at > idle_timeout():
        _revoke(session, "Idle timeout")
    elif user is None or not user.is_active:
        _revoke(session, "User account deactivated")
    else:
        session.last_used_at = now
        db.session.commit()
        return SessionContext(user=user, session=session)

    db.session.commit()
    current_app.logger.info("Session %s closed: %s", session.id, session.revoked_reason)
    return None


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke and commit one token. False when it was not active."""
    session = _active(token)
    if session is None:
        return False
    _revoke(session, reason)
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """Revoke every open session of a user. Caller commits."""
    sessions = (
        db.session.query(SessionToken)
        .filter_by(user_id=user_id, is_revoked=False)
        .all()
    )
    for session in sessions:
        _revoke(session, reason)
    return len(sessions)
