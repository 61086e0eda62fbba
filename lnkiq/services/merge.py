"""Fold the data an anonymous device collected into a user account.

Bookmarks owned by the device move to the user unless the user already has a
bookmark with the same URL, in which case the two are merged into the user's
row: earliest ``created_at`` wins, tags are unioned and the user's description
is kept when it has one. Page visits move the same way; a visit the user
already has for the same URL *and* ``visited_at`` absorbs the device copy and
their durations are summed.

The whole merge, including linking the device, is one transaction. Calling it
again for the same pair finds nothing left on the device and returns zeros.
"""

from __future__ import annotations

from flask import current_app

from lnkiq.extensions import db
from lnkiq.models import Bookmark, PageVisit, as_utc
from lnkiq.services.common import merge_tags
from lnkiq.services.devices import link_device


def _merge_duration(existing: int | None, incoming: int | None) -> int | None:
    if existing is not None and incoming is not None:
        return existing + incoming
    return existing if existing is not None else incoming


def _merge_bookmark(user_id: int, device_bookmark: Bookmark) -> None:
    existing = Bookmark.query.filter_by(user_id=user_id, url=device_bookmark.url).first()
    if existing is None:
        device_bookmark.user_id = user_id
        device_bookmark.device_id = None
        return

    if as_utc(device_bookmark.created_at) < as_utc(existing.created_at):
        existing.created_at = device_bookmark.created_at
    existing.tags = merge_tags(existing.tags, device_bookmark.tags)
    existing.description = existing.description or device_bookmark.description
    db.session.flush()
    db.session.delete(device_bookmark)


def _merge_visit(user_id: int, device_visit: PageVisit) -> None:
    existing = PageVisit.query.filter_by(
        user_id=user_id,
        url=device_visit.url,
        visited_at=device_visit.visited_at,
    ).first()
    if existing is None:
        device_visit.user_id = user_id
        device_visit.device_id = None
        return

    existing.duration_seconds = _merge_duration(
        existing.duration_seconds, device_visit.duration_seconds
    )
    db.session.flush()
    db.session.delete(device_visit)


def merge_anonymous_data_to_user(device_id: int, user_id: int) -> dict:
    bookmarks_merged = 0
    visits_merged = 0

    try:
        device_bookmarks = (
            Bookmark.query.filter_by(device_id=device_id).order_by(Bookmark.id.asc()).all()
        )
        for device_bookmark in device_bookmarks:
            _merge_bookmark(user_id, device_bookmark)
            db.session.flush()
            bookmarks_merged += 1

        device_visits = (
            PageVisit.query.filter_by(device_id=device_id)
            .order_by(PageVisit.id.asc())
            .all()
        )
        for device_visit in device_visits:
            _merge_visit(user_id, device_visit)
            db.session.flush()
            visits_merged += 1

        link_device(device_id, user_id, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Merged device %s into user %s: %s bookmarks, %s visits",
        device_id,
        user_id,
        bookmarks_merged,
        visits_merged,
    )
    return {"bookmarks_merged": bookmarks_merged, "visits_merged": visits_merged}
