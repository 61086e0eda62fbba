from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from lnkiq.extensions import db
from lnkiq.models import AnonymousDevice, Bookmark, PageVisit, utcnow


def _expired_unlinked_device_ids() -> list[int]:
    rows = (
        db.session.query(AnonymousDevice.id)
        .filter(AnonymousDevice.expires_at < utcnow())
        .filter(AnonymousDevice.user_id.is_(None))
        .order_by(AnonymousDevice.id.asc())
        .all()
    )
    return [row.id for row in rows]


def _delete_device_data(device_id: int) -> int:
    # A device linked since selection is no longer ours to delete.
    still_unlinked = (
        db.session.query(AnonymousDevice.id)
        .filter_by(id=device_id)
        .filter(AnonymousDevice.user_id.is_(None))
        .first()
    )
    if still_unlinked is None:
        return 0

    Bookmark.query.filter_by(device_id=device_id).delete(synchronize_session=False)
    PageVisit.query.filter_by(device_id=device_id).delete(synchronize_session=False)
    return AnonymousDevice.query.filter_by(id=device_id).delete(
        synchronize_session=False
    )


def cleanup_expired_devices() -> int:
    device_ids = _expired_unlinked_device_ids()
    if not device_ids:
        return 0

    deleted = 0
    for device_id in device_ids:
        try:
            with db.session.begin_nested():
                deleted += _delete_device_data(device_id)
        except SQLAlchemyError as exc:
            current_app.logger.warning(
                "Skipping expired device %s during cleanup: %s", device_id, exc
            )

    db.session.commit()
    db.session.expire_all()
    current_app.logger.info(
        "Expired device cleanup removed %s of %s devices", deleted, len(device_ids)
    )
    return deleted
