from __future__ import annotations

import hmac

from flask import current_app, g, jsonify, request
from flask_login import logout_user

from lnkiq.api import api_bp
from lnkiq.extensions import db
from lnkiq.models import Bookmark, utcnow
from lnkiq.services.accounts import AccountNotFound, delete_account
from lnkiq.services.common import (
    clean_tags,
    is_valid_url,
    parse_client_time,
    parse_tags,
)
from lnkiq.services.device_cleanup import cleanup_expired_devices
from lnkiq.services.library import (
    activity_stats,
    bookmark_stats,
    create_bookmark,
    list_visits,
    owner_visits_query,
    page_params,
    search_user_bookmarks,
    user_tags,
    visit_stats,
    visits_by_day,
)
from lnkiq.services.security import api_auth_required

BOOKMARKS_MAX_LIMIT = 100


def _get_user_bookmark_or_404(user_id: int, bookmark_id: int):
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return None, (jsonify({"error": "Bookmark not found"}), 404)
    return bookmark, None


@api_bp.route("/v1/health")
def health():
    return jsonify({"status": "ok", "service": "lnkiq"})


@api_bp.route("/v1/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    limit, offset = page_params(
        request.args.get("limit"), request.args.get("offset"), 20, BOOKMARKS_MAX_LIMIT
    )
    search = (request.args.get("search") or "").strip() or None
    tags = parse_tags(request.args.get("tags") or "")
    bookmarks, total = search_user_bookmarks(g.api_user.id, search, tags, limit, offset)
    return jsonify(
        {
            "bookmarks": [bookmark.as_dict() for bookmark in bookmarks],
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(bookmarks) < total,
        }
    )


@api_bp.route("/v1/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
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
        {"user_id": g.api_user.id}, payload, clean_tags(payload.get("tags"))
    )
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/v1/bookmarks/<int:bookmark_id>", methods=["GET"])
@api_auth_required()
def bookmarks_get_api(bookmark_id: int):
    bookmark, error = _get_user_bookmark_or_404(g.api_user.id, bookmark_id)
    if error:
        return error
    return jsonify(bookmark.as_dict())


@api_bp.route("/v1/bookmarks/<int:bookmark_id>", methods=["PATCH"])
@api_auth_required()
def bookmarks_update_api(bookmark_id: int):
    bookmark, error = _get_user_bookmark_or_404(g.api_user.id, bookmark_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    if "url" in payload:
        if not is_valid_url(payload.get("url")):
            return jsonify({"error": "Invalid URL format"}), 400
        bookmark.url = payload["url"]
    if "title" in payload:
        if not payload.get("title") or not isinstance(payload["title"], str):
            return jsonify({"error": "Title is required"}), 400
        bookmark.title = payload["title"]
    for field in ["description", "favicon"]:
        if field in payload:
            setattr(bookmark, field, payload.get(field) or None)
    if "tags" in payload:
        bookmark.tags = clean_tags(payload.get("tags"))

    db.session.commit()
    return jsonify(bookmark.as_dict())


@api_bp.route("/v1/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: int):
    bookmark, error = _get_user_bookmark_or_404(g.api_user.id, bookmark_id)
    if error:
        return error
    db.session.delete(bookmark)
    db.session.commit()
    return jsonify({"status": "deleted", "id": bookmark_id})


@api_bp.route("/v1/tags", methods=["GET"])
@api_auth_required()
def tags_list():
    return jsonify({"items": user_tags(g.api_user.id)})


@api_bp.route("/v1/tracking/visits", methods=["GET"])
@api_auth_required()
def visits_list_api():
    limit, offset = page_params(
        request.args.get("limit"),
        request.args.get("offset"),
        50,
        current_app.config["VISITS_MAX_LIMIT"],
    )
    query = owner_visits_query(
        {"user_id": g.api_user.id},
        since=parse_client_time(request.args.get("from")),
        until=parse_client_time(request.args.get("to")),
        url=(request.args.get("url") or "").strip() or None,
    )
    visits, total = list_visits(query, limit, offset)
    return jsonify(
        {
            "visits": [visit.as_dict() for visit in visits],
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + len(visits) < total,
        }
    )


@api_bp.route("/v1/tracking/visits/by-day", methods=["GET"])
@api_auth_required()
def visits_by_day_api():
    days = visits_by_day(
        g.api_user.id,
        since=parse_client_time(request.args.get("from")),
        until=parse_client_time(request.args.get("to")),
    )
    return jsonify({"days": days})


@api_bp.route("/v1/stats", methods=["GET"])
@api_auth_required()
def stats_api():
    user_id = g.api_user.id
    return jsonify(
        {
            "bookmarks": bookmark_stats(user_id),
            "visits": visit_stats(user_id),
            "activity": activity_stats(user_id),
        }
    )


@api_bp.route("/v1/user", methods=["DELETE"])
@api_auth_required()
def user_delete_api():
    user_id = g.api_user.id
    try:
        delete_account(user_id)
    except AccountNotFound:
        return jsonify({"error": "User not found"}), 404
    logout_user()
    return jsonify({"success": True, "message": "Account deleted successfully"})


@api_bp.route("/cron/cleanup-expired-devices", methods=["GET"])
def cron_cleanup_expired_devices():
    cron_secret = current_app.config.get("CRON_SECRET")
    if cron_secret:
        auth_header = request.headers.get("Authorization", "")
        if not hmac.compare_digest(auth_header, f"Bearer {cron_secret}"):
            return jsonify({"error": "Unauthorized"}), 401

    try:
        deleted = cleanup_expired_devices()
    except Exception:
        current_app.logger.exception("Error cleaning up expired devices")
        return jsonify({"error": "Failed to cleanup expired devices"}), 500

    return jsonify(
        {
            "success": True,
            "deleted_devices": deleted,
            "timestamp": utcnow().isoformat(),
        }
    )
