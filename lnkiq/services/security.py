from __future__ import annotations

from datetime import timedelta
from functools import wraps

from flask import current_app, g, jsonify, request
from flask_login import current_user

from lnkiq.extensions import db
from lnkiq.models import User, UserSession, as_utc, utcnow


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.removeprefix("Bearer ").strip()
    return token or None


def issue_session(user: User) -> str:
    token, token_hash = UserSession.issue_token()
    days = current_app.config.get("SESSION_TOKEN_EXPIRY_DAYS", 30)
    row = UserSession(
        user_id=user.id,
        token_hash=token_hash,
        expires_at=utcnow() + timedelta(days=days),
    )
    db.session.add(row)
    db.session.commit()
    return token


def revoke_session(token: str) -> bool:
    row = UserSession.query.filter_by(token_hash=UserSession.hash_token(token)).first()
    if not row:
        return False
    db.session.delete(row)
    db.session.commit()
    return True


def _user_from_session_token() -> User | None:
    token = bearer_token()
    if not token:
        return None
    row = UserSession.query.filter_by(token_hash=UserSession.hash_token(token)).first()
    if not row or as_utc(row.expires_at) <= utcnow():
        return None
    user = db.session.get(User, row.user_id)
    if not user:
        return None
    row.last_used_at = utcnow()
    db.session.commit()
    return user


def get_session_user(token_only: bool = False) -> User | None:
    if not token_only and current_user.is_authenticated:
        return current_user._get_current_object()
    return _user_from_session_token()


def api_auth_required(token_only=False):
    def decorator(func):
        @wraps(func)
        def wrapped(*args, **kwargs):
            user = get_session_user(token_only=token_only)
            if not user:
                return jsonify({"error": "authentication required"}), 401
            g.api_user = user
            return func(*args, **kwargs)

        return wrapped

    return decorator
