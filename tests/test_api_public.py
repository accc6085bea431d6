from __future__ import annotations

from datetime import UTC, datetime

from analytics.recorder import hash_ip
from audience.tokens import generate_unsubscribe_token
from content import items as item_service
from db.models import Event, Subscriber


def _item(session, item_type: str, title: str, **extra):
    data = {"type": item_type, "title": title, "source_url": f"https://example.com/{item_type}/{title}"}
    data.update(extra)
    return item_service.create_item(session, data)


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_subscribe_merges_case_insensitive_signups(client, session) -> None:
    first = client.post("/api/subscribe", json={"email": "A@B.com"})
    second = client.post("/api/subscribe", json={"email": "a@b.com", "tags": "vip"})

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["success"] is True
    subscriber = session.query(Subscriber).one()
    assert subscriber.email == "a@b.com"
    assert subscriber.tags == "site,vip"
    assert subscriber.source == "site"


def test_subscribe_records_attribution(client, session) -> None:
    response = client.post(
        "/api/subscribe",
        json={"email": "reader@example.com", "name": "Reader", "tags": ["launch"], "utm_source": "x"},
        headers={"Referer": "https://example.com/apps"},
    )

    assert response.status_code == 200
    subscriber = session.query(Subscriber).one()
    assert subscriber.tags == "launch,site"
    assert subscriber.utm_source == "x"
    assert subscriber.referer_at_signup == "https://example.com/apps"


def test_subscribe_rejects_invalid_email(client, session) -> None:
    response = client.post("/api/subscribe", json={"email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid payload"
    assert session.query(Subscriber).count() == 0


def test_unsubscribe_with_issued_token(client, session) -> None:
    token = client.post("/api/subscribe", json={"email": "reader@example.com"}).json()["unsubscribe_token"]

    response = client.post("/api/unsubscribe", json={"token": token})

    assert response.json() == {"success": True}
    assert session.query(Subscriber).one().unsubscribed_at is not None


def test_unsubscribe_errors(client) -> None:
    bad = client.post("/api/unsubscribe", json={"token": "definitely.not-valid"})
    unknown = client.post("/api/unsubscribe", json={"token": generate_unsubscribe_token("ghost@example.com")})

    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid unsubscribe token"
    assert unknown.status_code == 404


def test_resubscribe_after_unsubscribe(client, session) -> None:
    token = client.post("/api/subscribe", json={"email": "reader@example.com"}).json()["unsubscribe_token"]
    client.post("/api/unsubscribe", json={"token": token})

    client.post("/api/subscribe", json={"email": "reader@example.com"})

    assert session.query(Subscriber).one().unsubscribed_at is None


def test_track_sets_fingerprint_cookie_once(client, session) -> None:
    first = client.post("/api/track", json={"event": "pageview", "path": "/", "utm_source": "newsletter"})
    second = client.post("/api/track", json={"event": "pageview", "path": "/videos"})

    assert first.status_code == 204
    assert second.status_code == 204
    assert "fp_id" in first.cookies
    assert "fp_id" not in second.cookies
    events = session.query(Event).order_by(Event.id).all()
    assert [event.path for event in events] == ["/", "/videos"]
    assert events[0].fp_id == events[1].fp_id
    assert events[0].utm_source == "newsletter"
    assert events[0].ip_hash and events[0].ip_hash != "testclient"


def test_track_rejects_empty_path(client) -> None:
    response = client.post("/api/track", json={"event": "pageview", "path": ""})

    assert response.status_code == 400


def test_subscribe_is_rate_limited(client) -> None:
    statuses = [
        client.post("/api/subscribe", json={"email": f"reader{index}@example.com"}).status_code
        for index in range(11)
    ]

    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429


def test_subscribe_limit_ignores_forwarded_header_from_untrusted_peer(client) -> None:
    statuses = [
        client.post(
            "/api/subscribe",
            json={"email": f"reader{index}@example.com"},
            headers={"X-Forwarded-For": f"10.0.0.{index}"},
        ).status_code
        for index in range(11)
    ]

    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429


def test_forwarded_header_honoured_for_trusted_proxy(client, session, monkeypatch) -> None:
    monkeypatch.setenv("TRUSTED_PROXIES", "testclient")

    statuses = [
        client.post(
            "/api/subscribe",
            json={"email": f"reader{index}@example.com"},
            headers={"X-Forwarded-For": f"10.0.0.{index}, testclient"},
        ).status_code
        for index in range(11)
    ]
    client.post("/api/track", json={"event": "pageview", "path": "/"}, headers={"X-Forwarded-For": "203.0.113.7"})

    assert statuses == [200] * 11
    assert session.query(Event).one().ip_hash == hash_ip("203.0.113.7")


def test_home_page_sections(client, session) -> None:
    _item(session, "github", "featured-repo", featured=True)
    _item(session, "github", "other-repo")
    _item(session, "youtube", "hidden-video", visible=False)
    _item(session, "x_post", "x-old", published_at=datetime(2025, 1, 1, tzinfo=UTC))
    _item(session, "linkedin_post", "li-new", published_at=datetime(2025, 3, 1, tzinfo=UTC))
    _item(session, "x_post", "x-mid", published_at=datetime(2025, 2, 1, tzinfo=UTC))
    _item(session, "linkedin_post", "li-oldest", published_at=datetime(2024, 1, 1, tzinfo=UTC))

    page = client.get("/").json()

    assert page["title"] == "Personal Hub"
    assert page["hero"]["heading"] == "Hi, welcome."
    assert [item["title"] for item in page["open_source"]] == ["featured-repo"]
    assert page["videos"] == []
    assert [item["title"] for item in page["social_posts"]] == ["li-new", "x-mid", "x-old"]


def test_section_pages_list_visible_items(client, session) -> None:
    _item(session, "product", "course")
    _item(session, "app", "planner")

    assert [item["title"] for item in client.get("/products").json()["products"]] == ["course"]
    assert [item["title"] for item in client.get("/apps").json()["apps"]] == ["planner"]
    assert client.get("/privacy").json()["title"] == "Privacy Policy"


def test_unsubscribe_page_reports_token_state(client) -> None:
    token = generate_unsubscribe_token("reader@example.com")

    valid = client.get("/unsubscribe", params={"token": token}).json()
    invalid = client.get("/unsubscribe", params={"token": "nope"}).json()

    assert valid["email"] == "reader@example.com"
    assert valid["invalid"] is False
    assert invalid["invalid"] is True
