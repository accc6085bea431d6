from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Subscriber, utcnow

UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

_TAG_SEPARATORS = re.compile(r"[;,]")


def normalize_email(email: str | None) -> str | None:
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def split_tags(value: str | Iterable[str] | None) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        parts = _TAG_SEPARATORS.split(value)
    else:
        parts = [str(part) for part in value]
    return [part.strip() for part in parts if part and part.strip()]


def merge_tags(*groups: str | Iterable[str] | None) -> str:
    """Union of every tag group, first-seen order, comma-joined."""
    merged: list[str] = []
    for group in groups:
        for tag in split_tags(group):
            if tag not in merged:
                merged.append(tag)
    return ",".join(merged)


def get_subscriber_by_email(session: Session, email: str | None) -> Subscriber | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return session.execute(
        select(Subscriber).where(func.lower(Subscriber.email) == normalized)
    ).scalar_one_or_none()


def upsert_subscriber(
    session: Session,
    *,
    email: str | None,
    name: str | None = None,
    source: str = "site",
    tags: str | Iterable[str] | None = None,
    utm: Mapping[str, Any] | None = None,
    referer: str | None = None,
    resubscribe: bool = False,
) -> Subscriber:
    """Create or merge a subscriber keyed by lowercase email.

    Tags are unioned, provided attribution fields overwrite stored ones and
    missing ones keep what is stored. ``created_at`` and ``source`` never
    change for an existing row. ``resubscribe`` clears a previous opt-out.
    """
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("Email is required")

    utm = utm or {}
    now = utcnow()
    subscriber = get_subscriber_by_email(session, normalized)
    if subscriber is None:
        subscriber = Subscriber(
            email=normalized,
            name=name or None,
            source=source,
            tags=merge_tags(tags),
            referer_at_signup=referer or None,
            created_at=now,
            last_seen_at=now,
            **{field: utm.get(field) or None for field in UTM_FIELDS},
        )
        session.add(subscriber)
    else:
        subscriber.tags = merge_tags(subscriber.tags, tags)
        if name:
            subscriber.name = name
        if not subscriber.source:
            subscriber.source = source
        if referer:
            subscriber.referer_at_signup = referer
        for field in UTM_FIELDS:
            if utm.get(field):
                setattr(subscriber, field, utm[field])
        subscriber.last_seen_at = now
        if resubscribe:
            subscriber.unsubscribed_at = None
    session.commit()
    session.refresh(subscriber)
    return subscriber


def mark_unsubscribed(session: Session, email: str | None) -> Subscriber | None:
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("Email is required")
    subscriber = get_subscriber_by_email(session, normalized)
    if subscriber is None:
        return None
    subscriber.unsubscribed_at = utcnow()
    session.commit()
    return subscriber


def list_subscribers(session: Session, *, limit: int = 500) -> list[Subscriber]:
    stmt = select(Subscriber).order_by(Subscriber.created_at.desc(), Subscriber.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def serialize_subscriber(subscriber: Subscriber) -> dict[str, Any]:
    return {
        "id": subscriber.id,
        "email": subscriber.email,
        "name": subscriber.name,
        "source": subscriber.source,
        "tags": subscriber.tags,
        "tag_list": split_tags(subscriber.tags),
        **{field: getattr(subscriber, field) for field in UTM_FIELDS},
        "referer_at_signup": subscriber.referer_at_signup,
        "created_at": _iso(subscriber.created_at),
        "last_seen_at": _iso(subscriber.last_seen_at),
        "verified_at": _iso(subscriber.verified_at),
        "unsubscribed_at": _iso(subscriber.unsubscribed_at),
    }


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None
