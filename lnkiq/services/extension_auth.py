"""Authentication for requests coming from the browser extension.

An extension request is identified either by a signed-in session or by an
``X-Device-Token`` header naming an anonymous device. Every extension route
resolves the request once into an :class:`AuthContext` and decides its own
HTTP response from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import g, jsonify, request

from lnkiq.extensions import db
from lnkiq.models import AnonymousDevice, User
from lnkiq.services.devices import find_device_by_token, is_device_expired, touch_device
from lnkiq.services.security import get_session_user

DEVICE_TOKEN_HEADER = "X-Device-Token"


@dataclass
class AuthContext:
    device: AnonymousDevice | None = None
    user: User | None = None
    is_anonymous: bool = False
    is_authenticated: bool = False

    @property
    def has_credential(self) -> bool:
        return self.device is not None or self.is_authenticated

    def owner_fields(self) -> dict:
        """Ownership columns for rows created or listed under this context."""
        if self.is_authenticated and self.user is not None:
            return {"user_id": self.user.id}
        if self.device is not None:
            return {"device_id": self.device.id}
        return {}

    def owns(self, row) -> bool:
        if self.is_authenticated and self.user is not None:
            return row.user_id == self.user.id
        if self.device is not None:
            return row.device_id == self.device.id
        return False


def device_token_from_request() -> str | None:
    token = (request.headers.get(DEVICE_TOKEN_HEADER) or "").strip()
    return token or None


def resolve_extension_auth() -> AuthContext:
    user = get_session_user()
    if user is not None:
        return AuthContext(user=user, is_authenticated=True)

    device = find_device_by_token(device_token_from_request())
    if device is None or is_device_expired(device):
        return AuthContext()

    device = touch_device(device)
    if device.user_id is not None:
        linked_user = db.session.get(User, device.user_id)
        if linked_user is not None:
            return AuthContext(device=device, user=linked_user, is_authenticated=True)

    return AuthContext(device=device, is_anonymous=True)


def extension_auth_required(func):
    @wraps(func)
    def wrapped(*args, **kwargs):
        context = resolve_extension_auth()
        if not context.has_credential:
            return jsonify({"error": "Authentication required"}), 401
        g.auth_context = context
        return func(*args, **kwargs)

    return wrapped
