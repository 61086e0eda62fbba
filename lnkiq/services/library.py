from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from urllib.parse import urlparse

from lnkiq.extensions import db
from lnkiq.models import Bookmark, PageVisit, as_utc, utcnow


def _to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def page_params(raw_limit, raw_offset, default_limit: int, max_limit: int):
    limit = min(max(_to_int(raw_limit, default_limit), 1), max_limit)
    offset = max(_to_int(raw_offset, 0), 0)
    return limit, offset


def create_bookmark(owner: dict, payload: dict, tags: list[str]) -> Bookmark:
    bookmark = Bookmark(
        url=payload["url"],
        title=payload["title"],
        description=payload.get("description") or None,
        favicon=payload.get("favicon") or None,
        tags=tags,
        **owner,
    )
    db.session.add(bookmark)
    db.session.commit()
    return bookmark


def owner_bookmarks_query(owner: dict, search: str | None = None):
    query = Bookmark.query.filter_by(**owner)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            Bookmark.title.ilike(pattern)
            | Bookmark.description.ilike(pattern)
            | Bookmark.url.ilike(pattern)
        )
    return query.order_by(Bookmark.created_at.desc(), Bookmark.id.desc())


def search_user_bookmarks(
    user_id: int,
    search: str | None,
    tags: list[str],
    limit: int,
    offset: int,
) -> tuple[list[Bookmark], int]:
    rows = owner_bookmarks_query({"user_id": user_id}, search).all()
    if tags:
        wanted = set(tags)
        # Tags live in a JSON column, so "match any" is applied here.
        rows = [row for row in rows if wanted.intersection(row.tags or [])]
    return rows[offset : offset + limit], len(rows)


def user_tags(user_id: int) -> list[str]:
    names: set[str] = set()
    for (tags,) in db.session.query(Bookmark.tags).filter_by(user_id=user_id):
        names.update(tags or [])
    return sorted(names)


def owner_visits_query(
    owner: dict,
    since: datetime | None = None,
    until: datetime | None = None,
    url: str | None = None,
):
    query = PageVisit.query.filter_by(**owner)
    if since is not None:
        query = query.filter(PageVisit.visited_at >= since)
    if until is not None:
        query = query.filter(PageVisit.visited_at <= until)
    if url:
        query = query.filter(PageVisit.url.ilike(f"%{url}%"))
    return query


def list_visits(query, limit: int, offset: int) -> tuple[list[PageVisit], int]:
    total = query.count()
    rows = (
        query.order_by(PageVisit.visited_at.desc(), PageVisit.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


RECENT_ITEMS = 5
TOP_DOMAINS = 5
ACTIVITY_WINDOW_DAYS = 7


def bookmark_stats(user_id: int) -> dict:
    query = owner_bookmarks_query({"user_id": user_id})
    return {
        "total_bookmarks": query.count(),
        "total_tags": len(user_tags(user_id)),
        "recent_bookmarks": [row.as_dict() for row in query.limit(RECENT_ITEMS)],
    }


def visit_stats(user_id: int) -> dict:
    total_duration = (
        db.session.query(db.func.coalesce(db.func.sum(PageVisit.duration_seconds), 0))
        .filter(PageVisit.user_id == user_id)
        .scalar()
    )
    recent, total = list_visits(owner_visits_query({"user_id": user_id}), RECENT_ITEMS, 0)
    return {
        "total_visits": total,
        "total_duration": int(total_duration or 0),
        "recent_visits": [row.as_dict() for row in recent],
    }


def _domain_summaries(visits) -> list[dict]:
    totals: dict[str, dict] = defaultdict(lambda: {"visit_count": 0, "total_duration": 0})
    for visit in visits:
        domain = urlparse(visit.url).hostname
        if not domain:
            continue
        totals[domain]["visit_count"] += 1
        totals[domain]["total_duration"] += visit.duration_seconds or 0
    summaries = [{"domain": domain, **stats} for domain, stats in totals.items()]
    summaries.sort(key=lambda item: item["total_duration"], reverse=True)
    return summaries


def activity_stats(user_id: int) -> dict:
    visits = PageVisit.query.filter_by(user_id=user_id).all()
    since = utcnow() - timedelta(days=ACTIVITY_WINDOW_DAYS)
    return {
        "total_time_seconds": sum(visit.duration_seconds or 0 for visit in visits),
        "total_visits": len(visits),
        "top_domains": _domain_summaries(visits)[:TOP_DOMAINS],
        "last_7_days_time_seconds": sum(
            visit.duration_seconds or 0
            for visit in visits
            if as_utc(visit.visited_at) >= since
        ),
    }


def visits_by_day(
    user_id: int, since: datetime | None = None, until: datetime | None = None
) -> list[dict]:
    """Group a user's visits by UTC calendar day, newest day first.

    Without ``since`` the window starts at midnight seven days ago.
    """
    now = utcnow()
    if since is None:
        since = (now - timedelta(days=ACTIVITY_WINDOW_DAYS)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
    query = owner_visits_query({"user_id": user_id}, since=since, until=until or now)
    days: dict[str, list[PageVisit]] = defaultdict(list)
    for visit in query.order_by(PageVisit.visited_at.desc(), PageVisit.id.desc()):
        days[as_utc(visit.visited_at).date().isoformat()].append(visit)

    return [
        {
            "date": date,
            "visits": [visit.as_dict() for visit in day_visits],
            "total_duration": sum(visit.duration_seconds or 0 for visit in day_visits),
            "domains": _domain_summaries(day_visits),
        }
        for date, day_visits in sorted(days.items(), reverse=True)
    ]
