from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
import hashlib
import hmac
import logging
import os
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Event, Subscriber, as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SALT = "dev-salt"
PAGEVIEW = "pageview"
UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

_warned_default_salt = False


def _salt() -> str:
    global _warned_default_salt
    salt = os.getenv("ANALYTICS_SALT", "").strip()
    if salt:
        return salt
    if not _warned_default_salt and os.getenv("APP_ENV", "development") != "development":
        logger.warning("ANALYTICS_SALT is not set; visitor IPs are hashed with the development salt")
        _warned_default_salt = True
    return DEFAULT_SALT


def hash_ip(ip: str | None) -> str | None:
    if not ip:
        return None
    return hmac.new(_salt().encode("utf-8"), ip.encode("utf-8"), hashlib.sha256).hexdigest()


def track_event(
    session: Session,
    *,
    event: str,
    path: str,
    referer: str | None = None,
    utm: Mapping[str, Any] | None = None,
    fp_id: str | None = None,
    ip: str | None = None,
    ua: str | None = None,
) -> Event:
    utm = utm or {}
    row = Event(
        event=event,
        path=path,
        referer=referer or None,
        fp_id=fp_id or None,
        ip_hash=hash_ip(ip),
        ua=ua or None,
        ts=utcnow(),
        **{field: utm.get(field) or None for field in UTM_FIELDS},
    )
    session.add(row)
    session.commit()
    return row


def window_start(days: int, now: datetime | None = None) -> datetime:
    """Midnight UTC of the first day of a ``days``-long window ending today."""
    today = as_utc(now or utcnow()).date()
    first = today - timedelta(days=max(days, 1) - 1)
    return datetime.combine(first, time.min, tzinfo=UTC)


def daily_pageviews(session: Session, days: int = 7, *, now: datetime | None = None) -> list[dict[str, Any]]:
    start = window_start(days, now)
    counts: dict[date, int] = {}
    stamps = session.execute(
        select(Event.ts).where(Event.event == PAGEVIEW, Event.ts >= start)
    ).scalars()
    for ts in stamps:
        day = as_utc(ts).date()
        counts[day] = counts.get(day, 0) + 1
    series = []
    for offset in range(max(days, 1)):
        day = start.date() + timedelta(days=offset)
        series.append({"day": day.isoformat(), "count": counts.get(day, 0)})
    return series


def top_pages(session: Session, days: int = 7, limit: int = 5, *, now: datetime | None = None) -> list[dict[str, Any]]:
    count = func.count(Event.id).label("count")
    rows = session.execute(
        select(Event.path, count)
        .where(Event.event == PAGEVIEW, Event.ts >= window_start(days, now))
        .group_by(Event.path)
        .order_by(count.desc(), Event.path)
        .limit(limit)
    ).all()
    return [{"path": path, "count": total} for path, total in rows]


def utm_breakdown(session: Session, days: int = 7, limit: int = 5, *, now: datetime | None = None) -> list[dict[str, Any]]:
    source = func.coalesce(Event.utm_source, "direct").label("source")
    count = func.count(Event.id).label("count")
    rows = session.execute(
        select(source, count)
        .where(Event.event == PAGEVIEW, Event.ts >= window_start(days, now))
        .group_by(source)
        .order_by(count.desc(), source)
        .limit(limit)
    ).all()
    return [{"source": name, "count": total} for name, total in rows]


def totals(session: Session, days: int = 7, *, now: datetime | None = None) -> dict[str, int]:
    visitors = session.execute(
        select(func.count(func.distinct(Event.fp_id))).where(
            Event.event == PAGEVIEW, Event.ts >= window_start(days, now)
        )
    ).scalar_one()
    live = session.execute(
        select(func.count(Subscriber.id)).where(Subscriber.unsubscribed_at.is_(None))
    ).scalar_one()
    unsubscribed = session.execute(
        select(func.count(Subscriber.id)).where(Subscriber.unsubscribed_at.is_not(None))
    ).scalar_one()
    return {"visitors": visitors, "subscribers": live, "unsubscribed": unsubscribed}


def analytics_summary(session: Session, days: int = 7, *, now: datetime | None = None) -> dict[str, Any]:
    return {
        "days": days,
        "totals": totals(session, days, now=now),
        "sparkline": daily_pageviews(session, days, now=now),
        "top_pages": top_pages(session, days, now=now),
        "utm_breakdown": utm_breakdown(session, days, now=now),
    }
