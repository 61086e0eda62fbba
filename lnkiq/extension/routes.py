from __future__ import annotations

import math

from flask import current_app, g, jsonify, request

from lnkiq.extension import extension_bp
from lnkiq.extensions import db
from lnkiq.models import Bookmark, PageVisit, as_utc, utcnow
from lnkiq.services.common import clean_tags, is_valid_url, parse_client_time
from lnkiq.services.devices import (
    DeviceLinkError,
    check_linkable,
    create_device,
    days_remaining,
    find_device_by_token,
    is_device_expired,
    unlink_device,
)
from lnkiq.services.extension_auth import (
    device_token_from_request,
    extension_auth_required,
    resolve_extension_auth,
)
from lnkiq.services.library import (
    create_bookmark,
    list_visits,
    owner_bookmarks_query,
    owner_visits_query,
    page_params,
)
from lnkiq.services.merge import merge_anonymous_data_to_user

_EXTENSION_ORIGIN_PREFIXES = ("chrome-extension://", "moz-extension://")


def _origin_allowed(origin: str) -> bool:
    return origin.startswith(_EXTENSION_ORIGIN_PREFIXES) or "localhost" in origin


@extension_bp.after_request
def add_cors_headers(response):
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = (
        "Content-Type, X-Device-Token, Authorization"
    )
    response.headers["Access-Control-Max-Age"] = "86400"
    origin = request.headers.get("Origin") or ""
    if origin and _origin_allowed(origin):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


def _device_from_header():
    """Look up the device named by the header for the link/unlink routes."""
    token = device_token_from_request()
    if not token:
        return None, (jsonify({"error": "X-Device-Token header required"}), 400)
    device = find_device_by_token(token)
    if not device:
        return None, (jsonify({"error": "Device not found"}), 404)
    return device, None


@extension_bp.route("/device", methods=["POST"])
def device_create():
    device = create_device()
    return jsonify(device.as_dict()), 201


@extension_bp.route("/device/link", methods=["POST"])
def device_link():
    context = resolve_extension_auth()
    if not context.is_authenticated or context.user is None:
        return jsonify({"error": "Authentication required"}), 401

    device, error = _device_from_header()
    if error:
        return error

    try:
        needs_merge = check_linkable(device, context.user.id)
    except DeviceLinkError as exc:
        return jsonify({"error": exc.message}), exc.status_code

    if not needs_merge:
        return jsonify(
            {
                "message": "Device already linked to your account",
                "device_id": device.id,
                "bookmarks_merged": 0,
                "visits_merged": 0,
            }
        )

    try:
        counts = merge_anonymous_data_to_user(device.id, context.user.id)
    except Exception:
        current_app.logger.exception("Failed to link device %s", device.id)
        return jsonify({"error": "Failed to link device"}), 500

    return jsonify(
        {
            "message": "Device linked successfully",
            "device_id": device.id,
            **counts,
        }
    )


@extension_bp.route("/device/unlink", methods=["POST"])
def device_unlink():
    device, error = _device_from_header()
    if error:
        return error
    if is_device_expired(device):
        return jsonify({"error": "Device token expired"}), 410

    if not unlink_device(device.id):
        return jsonify(
            {
                "message": "Device is not linked to any account",
                "device_id": device.id,
                "was_linked": False,
            }
        )
    return jsonify(
        {
            "message": "Device unlinked successfully. You are now signed out.",
            "device_id": device.id,
            "was_linked": True,
        }
    )


@extension_bp.route("/device/status", methods=["GET"])
def device_status():
    context = resolve_extension_auth()
    if not context.has_credential:
        return jsonify({"error": "Invalid or expired device token"}), 401

    user_payload = context.user.profile_dict() if context.user else None
    if context.device is None:
        return jsonify(
            {"is_linked": True, "is_authenticated": True, "user": user_payload}
        )

    device = context.device
    return jsonify(
        {
            "device_id": device.id,
            "expires_at": as_utc(device.expires_at).isoformat(),
            "days_remaining": days_remaining(device.expires_at),
            "last_active_at": as_utc(device.last_active_at).isoformat(),
            "is_linked": device.user_id is not None,
            "is_authenticated": context.is_authenticated,
            "user": user_payload,
        }
    )


@extension_bp.route("/me", methods=["GET"])
def me():
    context = resolve_extension_auth()
    if not context.has_credential:
        return jsonify({"error": "Invalid or expired device token"}), 401
    if not context.is_authenticated or context.user is None:
        return jsonify({"error": "Device not linked to an account"}), 403
    return jsonify(context.user.as_dict())


@extension_bp.route("/bookmarks", methods=["GET"])
@extension_auth_required
def bookmarks_list():
    bookmarks = owner_bookmarks_query(g.auth_context.owner_fields()).all()
    return jsonify(
        {
            "bookmarks": [bookmark.as_dict() for bookmark in bookmarks],
            "count": len(bookmarks),
        }
    )


@extension_bp.route("/bookmarks", methods=["POST"])
@extension_auth_required
def bookmarks_create():
    payload = request.get_json(silent=True) or {}
    url = payload.get("url")
    title = payload.get("title")
    if not url or not isinstance(url, str):
        return jsonify({"error": "URL is required"}), 400
    if not title or not isinstance(title, str):
        return jsonify({"error": "Title is required"}), 400
    if not is_valid_url(url):
        return jsonify({"error": "Invalid URL format"}), 400

    bookmark = create_bookmark(
        g.auth_context.owner_fields(), payload, clean_tags(payload.get("tags"))
    )
    return jsonify(bookmark.as_dict()), 201


@extension_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@extension_auth_required
def bookmarks_delete(bookmark_id: int):
    bookmark = db.session.get(Bookmark, bookmark_id)
    if not bookmark:
        return jsonify({"error": "Bookmark not found"}), 404
    if not g.auth_context.owns(bookmark):
        return jsonify({"error": "Not authorized to delete this bookmark"}), 403

    db.session.delete(bookmark)
    db.session.commit()
    return jsonify({"message": "Bookmark deleted"})


@extension_bp.route("/tracking/visit", methods=["POST"])
@extension_auth_required
def visit_create():
    payload = request.get_json(silent=True) or {}
    url = payload.get("url")
    if not url or not isinstance(url, str):
        return jsonify({"error": "URL is required"}), 400
    if not is_valid_url(url):
        return jsonify({"error": "Invalid URL format"}), 400

    visited_at = utcnow()
    if payload.get("visited_at"):
        visited_at = parse_client_time(payload.get("visited_at"))
        if visited_at is None:
            return jsonify({"error": "Invalid visited_at"}), 400

    visit = PageVisit(
        url=url,
        title=payload.get("title") or None,
        favicon=payload.get("favicon") or None,
        visited_at=visited_at,
        **g.auth_context.owner_fields(),
    )
    db.session.add(visit)
    db.session.commit()
    current_app.logger.debug("Recorded visit %s for %s", visit.id, visit.url)

    response = visit.as_dict()
    response["visit_id"] = response.pop("id")
    return jsonify(response), 201


@extension_bp.route("/tracking/visit/<int:visit_id>", methods=["PATCH"])
@extension_auth_required
def visit_update_duration(visit_id: int):
    payload = request.get_json(silent=True) or {}
    duration = payload.get("duration_seconds")
    if (
        isinstance(duration, bool)
        or not isinstance(duration, (int, float))
        or not math.isfinite(duration)
        or duration < 0
    ):
        return jsonify({"error": "Valid duration_seconds is required"}), 400

    visit = db.session.get(PageVisit, visit_id)
    if not visit:
        return jsonify({"error": "Page visit not found"}), 404
    if not g.auth_context.owns(visit):
        return jsonify({"error": "Not authorized to update this visit"}), 403

    # Last write wins; concurrent updates are not combined.
    visit.duration_seconds = round(duration)
    db.session.commit()
    return jsonify(
        {
            "visit_id": visit.id,
            "url": visit.url,
            "duration_seconds": visit.duration_seconds,
        }
    )


@extension_bp.route("/tracking/visits", methods=["GET"])
@extension_auth_required
def visits_list():
    max_limit = current_app.config["VISITS_MAX_LIMIT"]
    limit, offset = page_params(
        request.args.get("limit"), request.args.get("offset"), 100, max_limit
    )
    query = owner_visits_query(
        g.auth_context.owner_fields(),
        since=parse_client_time(request.args.get("from")),
        until=parse_client_time(request.args.get("to")),
    )
    visits, total = list_visits(query, limit, offset)
    return jsonify(
        {
            "visits": [visit.as_dict() for visit in visits],
            "count": len(visits),
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    )
