from __future__ import annotations

from datetime import UTC, datetime, timedelta

from analytics import recorder
from audience.subscribers import mark_unsubscribed, upsert_subscriber
from db.models import Event

NOW = datetime(2026, 4, 19, 15, 30, tzinfo=UTC)


def _pageview(session, path: str, *, days_ago: int = 0, utm_source: str | None = None, fp_id: str = "fp-1") -> None:
    session.add(
        Event(
            event="pageview",
            path=path,
            utm_source=utm_source,
            fp_id=fp_id,
            ts=NOW - timedelta(days=days_ago, hours=1),
        )
    )
    session.commit()


def test_hash_ip_is_salted_and_stable(monkeypatch) -> None:
    first = recorder.hash_ip("203.0.113.9")

    assert first == recorder.hash_ip("203.0.113.9")
    assert "203.0.113.9" not in first
    assert recorder.hash_ip(None) is None

    monkeypatch.setenv("ANALYTICS_SALT", "prod-salt")
    assert recorder.hash_ip("203.0.113.9") != first


def test_track_event_stores_hashed_ip(session) -> None:
    row = recorder.track_event(
        session,
        event="pageview",
        path="/projects",
        utm={"utm_source": "newsletter", "utm_term": ""},
        fp_id="fp-9",
        ip="198.51.100.4",
        ua="pytest",
    )

    assert row.ip_hash == recorder.hash_ip("198.51.100.4")
    assert row.utm_source == "newsletter"
    assert row.utm_term is None


def test_daily_pageviews_returns_exactly_n_days_ascending(session) -> None:
    _pageview(session, "/", days_ago=0)
    _pageview(session, "/", days_ago=0)
    _pageview(session, "/videos", days_ago=3)
    _pageview(session, "/old", days_ago=30)
    session.add(Event(event="click", path="/", ts=NOW))
    session.commit()

    series = recorder.daily_pageviews(session, 7, now=NOW)

    assert len(series) == 7
    assert [point["day"] for point in series] == sorted(point["day"] for point in series)
    assert series[0]["day"] == "2026-04-13"
    assert series[-1] == {"day": "2026-04-19", "count": 2}
    assert series[3] == {"day": "2026-04-16", "count": 1}
    assert sum(point["count"] for point in series) == 3


def test_empty_window_is_all_zeroes(session) -> None:
    series = recorder.daily_pageviews(session, 3, now=NOW)

    assert series == [
        {"day": "2026-04-17", "count": 0},
        {"day": "2026-04-18", "count": 0},
        {"day": "2026-04-19", "count": 0},
    ]


def test_summary_rollups(session) -> None:
    _pageview(session, "/", utm_source="twitter", fp_id="a")
    _pageview(session, "/", fp_id="b")
    _pageview(session, "/apps", fp_id="a")
    upsert_subscriber(session, email="a@example.com")
    upsert_subscriber(session, email="b@example.com")
    mark_unsubscribed(session, "b@example.com")

    summary = recorder.analytics_summary(session, 7, now=NOW)

    assert summary["days"] == 7
    assert summary["totals"] == {"visitors": 2, "subscribers": 1, "unsubscribed": 1}
    assert summary["top_pages"] == [{"path": "/", "count": 2}, {"path": "/apps", "count": 1}]
    assert summary["utm_breakdown"] == [{"source": "direct", "count": 2}, {"source": "twitter", "count": 1}]
    assert len(summary["sparkline"]) == 7
