import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.auth_session import AuthSession


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> str:
    """
    Stage a server-side session row and return the RAW token for the cookie.
    Only the hash is stored; the caller commits.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 28800)
    db.session.add(AuthSession(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=datetime.utcnow() + timedelta(seconds=lifetime),
    ))
    return raw_token


def get_session_from_request():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "visitslot_session")
    raw_token = request.cookies.get(cookie_name)
    if not raw_token:
        return None

    sess = AuthSession.query.filter_by(token_hash=_hash_token(raw_token)).first()
    now = datetime.utcnow()
    idle_seconds = current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200)
    if sess is None or not sess.is_live(now, idle_seconds):
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    sess = AuthSession.query.filter_by(token_hash=_hash_token(raw_token), revoked_at=None).first()
    if not sess:
        return False
    sess.revoked_at = datetime.utcnow()
    return True


def revoke_all_sessions(user_id: int) -> int:
    now = datetime.utcnow()
    sessions = AuthSession.query.filter_by(user_id=user_id, revoked_at=None).all()
    for s in sessions:
        s.revoked_at = now
    return len(sessions)
