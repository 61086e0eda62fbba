from datetime import datetime, timezone

from lnkiq.extensions import db
from lnkiq.models import (
    AnonymousDevice,
    Bookmark,
    OAuthAccount,
    PageVisit,
    User,
    UserSession,
)
from lnkiq.services import library
from lnkiq.services.accounts import sign_in_oauth_user


def _sign_in(app, name: str, provider_account_id: str | None = None):
    with app.app_context():
        user, token = sign_in_oauth_user(
            "github",
            provider_account_id or f"gh-{name}",
            {"name": name, "email": f"{name}@example.com", "image": "https://img/a.png"},
        )
        return user.id, {"Authorization": f"Bearer {token}"}


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_session_routes_require_authentication(client):
    assert client.get("/api/v1/bookmarks").status_code == 401
    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": "Bearer not-a-session"}
    )
    assert response.status_code == 401


def test_sign_in_reuses_user_for_same_account_and_email(app):
    first_id, _ = _sign_in(app, "alice")
    again_id, _ = _sign_in(app, "alice")
    other_provider_id, _ = _sign_in(app, "alice", provider_account_id="gh-second")
    assert first_id == again_id == other_provider_id

    with app.app_context():
        assert User.query.count() == 1
        assert OAuthAccount.query.count() == 2
        assert UserSession.query.count() == 3


def test_bookmark_crud_search_and_tags(client, app):
    _, auth = _sign_in(app, "reader")

    for url, title, tags in [
        ("https://python.example", "Python docs", ["dev", "python"]),
        ("https://garden.example", "Gardening tips", ["home"]),
        ("https://rust.example", "Rust book", ["dev"]),
    ]:
        response = client.post(
            "/api/v1/bookmarks",
            headers=auth,
            json={"url": url, "title": title, "tags": tags},
        )
        assert response.status_code == 201

    listing = client.get("/api/v1/bookmarks?search=python", headers=auth).get_json()
    assert [row["title"] for row in listing["bookmarks"]] == ["Python docs"]

    listing = client.get("/api/v1/bookmarks?tags=dev&limit=1", headers=auth).get_json()
    assert listing["total"] == 2
    assert len(listing["bookmarks"]) == 1
    assert listing["has_more"] is True

    tags = client.get("/api/v1/tags", headers=auth).get_json()["items"]
    assert tags == ["dev", "home", "python"]

    bookmark_id = listing["bookmarks"][0]["id"]
    response = client.patch(
        f"/api/v1/bookmarks/{bookmark_id}",
        headers=auth,
        json={"description": "Updated", "tags": ["dev", "dev", "lang"]},
    )
    assert response.status_code == 200
    assert response.get_json()["description"] == "Updated"
    assert response.get_json()["tags"] == ["dev", "lang"]

    response = client.patch(
        f"/api/v1/bookmarks/{bookmark_id}", headers=auth, json={"url": "nope"}
    )
    assert response.status_code == 400

    assert client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=auth).status_code == 200
    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=auth).status_code == 404


def test_bookmarks_are_scoped_to_their_owner(client, app):
    _, owner = _sign_in(app, "owner")
    _, stranger = _sign_in(app, "stranger")
    created = client.post(
        "/api/v1/bookmarks",
        headers=owner,
        json={"url": "https://private.example", "title": "Private"},
    ).get_json()

    assert client.get(f"/api/v1/bookmarks/{created['id']}", headers=stranger).status_code == 404
    assert (
        client.delete(f"/api/v1/bookmarks/{created['id']}", headers=stranger).status_code
        == 404
    )


def test_visits_listing_filters_by_url_and_range(client, app):
    user_id, auth = _sign_in(app, "visitor")
    with app.app_context():
        for url, day in [
            ("https://a.example/1", 1),
            ("https://a.example/2", 2),
            ("https://b.example/1", 3),
        ]:
            db.session.add(
                PageVisit(
                    url=url,
                    user_id=user_id,
                    visited_at=datetime(2026, 4, day, tzinfo=timezone.utc),
                )
            )
        db.session.commit()

    listing = client.get("/api/v1/tracking/visits?url=a.example", headers=auth).get_json()
    assert listing["total"] == 2
    assert [row["url"] for row in listing["visits"]] == [
        "https://a.example/2",
        "https://a.example/1",
    ]

    listing = client.get(
        "/api/v1/tracking/visits?from=2026-04-02T00:00:00Z&to=2026-04-02T23:59:59Z",
        headers=auth,
    ).get_json()
    assert [row["url"] for row in listing["visits"]] == ["https://a.example/2"]


def test_delete_account_removes_data_and_unlinks_devices(client, app):
    user_id, auth = _sign_in(app, "leaver")
    device = client.post("/api/v1/extension/device").get_json()
    device_headers = {"X-Device-Token": device["device_token"]}
    client.post("/api/v1/extension/device/link", headers={**auth, **device_headers})
    client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"url": "https://gone.example", "title": "Gone"},
    )
    client.post(
        "/api/v1/extension/tracking/visit",
        headers=auth,
        json={"url": "https://gone.example"},
    )

    response = client.delete("/api/v1/user", headers=auth)
    assert response.status_code == 200
    assert response.get_json()["success"] is True

    with app.app_context():
        assert db.session.get(User, user_id) is None
        assert Bookmark.query.filter_by(user_id=user_id).count() == 0
        assert PageVisit.query.filter_by(user_id=user_id).count() == 0
        assert UserSession.query.filter_by(user_id=user_id).count() == 0
        assert OAuthAccount.query.filter_by(user_id=user_id).count() == 0
        device_row = AnonymousDevice.query.filter_by(
            device_token=device["device_token"]
        ).one()
        assert device_row.user_id is None

    # The device keeps working anonymously; the session does not.
    status = client.get("/api/v1/extension/device/status", headers=device_headers)
    assert status.get_json()["is_authenticated"] is False
    assert client.delete("/api/v1/user", headers=auth).status_code == 401


def test_cookie_session_from_bearer_login(client, app):
    user_id, auth = _sign_in(app, "browser")

    response = client.post("/auth/login")
    assert response.status_code == 401
    assert response.get_json()["error"] == "authentication required"

    response = client.post("/auth/login", headers=auth)
    assert response.status_code == 200
    assert response.get_json()["user"]["id"] == user_id

    # No Authorization header from here on: the cookie carries the session.
    assert client.get("/api/v1/bookmarks").status_code == 200
    me = client.get("/api/v1/extension/me")
    assert me.status_code == 200
    assert me.get_json()["id"] == user_id

    created = client.post(
        "/api/v1/extension/bookmarks",
        json={"url": "https://cookie.example", "title": "Cookie"},
    )
    assert created.status_code == 201
    with app.app_context():
        row = Bookmark.query.filter_by(url="https://cookie.example").one()
        assert row.user_id == user_id
        assert row.device_id is None

    # Re-login needs the bearer token, not the cookie.
    assert client.post("/auth/login").status_code == 401

    assert client.post("/auth/logout").status_code == 200
    assert client.get("/api/v1/bookmarks").status_code == 401
    assert client.get("/api/v1/extension/me").status_code == 401


def test_logout_revokes_bearer_session(client, app):
    _, auth = _sign_in(app, "leaving")
    assert client.get("/api/v1/bookmarks", headers=auth).status_code == 200

    assert client.post("/auth/logout", headers=auth).status_code == 200
    assert client.get("/api/v1/bookmarks", headers=auth).status_code == 401
    assert client.post("/auth/logout", headers=auth).status_code == 401


def _add_visits(app, user_id: int):
    with app.app_context():
        for url, visited_at, duration in [
            ("https://a.example/1", datetime(2026, 4, 10, 10, tzinfo=timezone.utc), 60),
            ("https://a.example/2", datetime(2026, 4, 10, 12, tzinfo=timezone.utc), 30),
            ("https://b.example/", datetime(2026, 4, 9, 9, tzinfo=timezone.utc), 200),
            ("https://c.example/", datetime(2026, 3, 1, 9, tzinfo=timezone.utc), 5),
        ]:
            db.session.add(
                PageVisit(
                    url=url,
                    user_id=user_id,
                    visited_at=visited_at,
                    duration_seconds=duration,
                )
            )
        db.session.commit()


def test_stats_summarize_bookmarks_and_activity(client, app, monkeypatch):
    monkeypatch.setattr(
        library, "utcnow", lambda: datetime(2026, 4, 10, 18, tzinfo=timezone.utc)
    )
    user_id, auth = _sign_in(app, "counter")
    _add_visits(app, user_id)
    for url, tags in [("https://one.example", ["x"]), ("https://two.example", ["x", "y"])]:
        client.post(
            "/api/v1/bookmarks",
            headers=auth,
            json={"url": url, "title": url, "tags": tags},
        )

    stats = client.get("/api/v1/stats", headers=auth).get_json()

    assert stats["bookmarks"]["total_bookmarks"] == 2
    assert stats["bookmarks"]["total_tags"] == 2
    assert len(stats["bookmarks"]["recent_bookmarks"]) == 2

    assert stats["visits"]["total_visits"] == 4
    assert stats["visits"]["total_duration"] == 295
    assert stats["visits"]["recent_visits"][0]["url"] == "https://a.example/2"

    activity = stats["activity"]
    assert activity["total_time_seconds"] == 295
    assert activity["total_visits"] == 4
    assert activity["last_7_days_time_seconds"] == 290
    assert [item["domain"] for item in activity["top_domains"]] == [
        "b.example",
        "a.example",
        "c.example",
    ]
    assert activity["top_domains"][1] == {
        "domain": "a.example",
        "visit_count": 2,
        "total_duration": 90,
    }


def test_visits_grouped_by_day(client, app, monkeypatch):
    monkeypatch.setattr(
        library, "utcnow", lambda: datetime(2026, 4, 10, 18, tzinfo=timezone.utc)
    )
    user_id, auth = _sign_in(app, "daily")
    _add_visits(app, user_id)

    days = client.get("/api/v1/tracking/visits/by-day", headers=auth).get_json()["days"]
    assert [day["date"] for day in days] == ["2026-04-10", "2026-04-09"]
    assert days[0]["total_duration"] == 90
    assert [visit["url"] for visit in days[0]["visits"]] == [
        "https://a.example/2",
        "https://a.example/1",
    ]
    assert days[0]["domains"] == [
        {"domain": "a.example", "visit_count": 2, "total_duration": 90}
    ]

    days = client.get(
        "/api/v1/tracking/visits/by-day?from=2026-02-01T00:00:00Z&to=2026-03-31T00:00:00Z",
        headers=auth,
    ).get_json()["days"]
    assert [day["date"] for day in days] == ["2026-03-01"]
