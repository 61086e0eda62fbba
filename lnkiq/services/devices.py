from __future__ import annotations

import math
import secrets
from datetime import datetime, timedelta

from flask import current_app

from lnkiq.extensions import db
from lnkiq.models import AnonymousDevice, as_utc, utcnow

DEVICE_TOKEN_EXPIRY_DAYS = 90
DEVICE_TOKEN_BYTES = 32
_MAX_TOKEN_ATTEMPTS = 5


class DeviceLinkError(Exception):
    status_code = 400
    message = "Device cannot be linked"


class DeviceExpired(DeviceLinkError):
    status_code = 410
    message = "Device token expired"


class DeviceLinkedToOtherUser(DeviceLinkError):
    status_code = 409
    message = "Device already linked to another user"


def _expiry_days() -> int:
    return current_app.config.get("DEVICE_TOKEN_EXPIRY_DAYS", DEVICE_TOKEN_EXPIRY_DAYS)


def _next_expiry(now: datetime) -> datetime:
    return now + timedelta(days=_expiry_days())


def generate_device_token() -> str:
    return secrets.token_hex(DEVICE_TOKEN_BYTES)


def create_device() -> AnonymousDevice:
    token = generate_device_token()
    attempts = 1
    while find_device_by_token(token) is not None:
        if attempts >= _MAX_TOKEN_ATTEMPTS:
            raise RuntimeError("could not generate a unique device token")
        token = generate_device_token()
        attempts += 1

    now = utcnow()
    device = AnonymousDevice(
        device_token=token,
        expires_at=_next_expiry(now),
        last_active_at=now,
        created_at=now,
    )
    db.session.add(device)
    db.session.commit()
    return device


def find_device_by_token(token: str | None) -> AnonymousDevice | None:
    if not token:
        return None
    return AnonymousDevice.query.filter_by(device_token=token).first()


def is_device_expired(device: AnonymousDevice) -> bool:
    return as_utc(device.expires_at) < utcnow()


def touch_device(device: AnonymousDevice) -> AnonymousDevice:
    now = utcnow()
    device.expires_at = _next_expiry(now)
    device.last_active_at = now
    db.session.commit()
    return device


def link_device(device_id: int, user_id: int, commit: bool = True) -> AnonymousDevice:
    device = db.session.get(AnonymousDevice, device_id)
    if device is None:
        raise LookupError(f"device {device_id} not found")
    if device.user_id is not None and device.user_id != user_id:
        raise DeviceLinkedToOtherUser()
    device.user_id = user_id
    if commit:
        db.session.commit()
    return device


def unlink_device(device_id: int) -> bool:
    device = db.session.get(AnonymousDevice, device_id)
    if device is None or device.user_id is None:
        return False
    device.user_id = None
    device.last_active_at = utcnow()
    db.session.commit()
    return True


def check_linkable(device: AnonymousDevice, user_id: int) -> bool:
    """Apply the link policy for ``device`` and the signed-in ``user_id``.

    Returns True when the device still needs merging into the user, False
    when it is already linked to that same user. Raises DeviceExpired or
    DeviceLinkedToOtherUser otherwise.
    """
    if is_device_expired(device):
        raise DeviceExpired()
    if device.user_id is not None and device.user_id != user_id:
        raise DeviceLinkedToOtherUser()
    return device.user_id != user_id


def days_remaining(expires_at: datetime) -> int:
    seconds = (as_utc(expires_at) - utcnow()).total_seconds()
    return max(0, math.ceil(seconds / 86400))
