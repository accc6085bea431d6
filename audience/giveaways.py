from __future__ import annotations

import random
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Giveaway, GiveawayEntry, utcnow
from .subscribers import get_subscriber_by_email


class GiveawayNotFoundError(LookupError):
    pass


class SubscriberNotFoundError(LookupError):
    pass


class NoEntriesError(ValueError):
    pass


def _get_or_raise(session: Session, giveaway_id: int) -> Giveaway:
    giveaway = session.get(Giveaway, giveaway_id)
    if giveaway is None:
        raise GiveawayNotFoundError("Giveaway not found")
    return giveaway


def list_giveaways(session: Session) -> list[Giveaway]:
    stmt = select(Giveaway).order_by(Giveaway.created_at.desc(), Giveaway.id.desc())
    return list(session.execute(stmt).scalars().all())


def create_giveaway(session: Session, data: Mapping[str, Any]) -> Giveaway:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    giveaway = Giveaway(
        name=name,
        description=data.get("description") or None,
        start_date=data.get("start_date") or None,
        end_date=data.get("end_date") or None,
        rules=data.get("rules") or None,
    )
    session.add(giveaway)
    session.commit()
    session.refresh(giveaway)
    return giveaway


def add_entry(session: Session, giveaway_id: int, email: str, *, source: str | None = None) -> tuple[GiveawayEntry, bool]:
    """Enter an existing subscriber; returns the entry and whether it is new."""
    _get_or_raise(session, giveaway_id)
    subscriber = get_subscriber_by_email(session, email)
    if subscriber is None:
        raise SubscriberNotFoundError("Subscriber not found")
    existing = session.execute(
        select(GiveawayEntry).where(
            GiveawayEntry.giveaway_id == giveaway_id,
            GiveawayEntry.subscriber_id == subscriber.id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing, False
    entry = GiveawayEntry(giveaway_id=giveaway_id, subscriber_id=subscriber.id, source=source or "manual")
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry, True


def count_entries(session: Session, giveaway_id: int) -> int:
    return session.execute(
        select(func.count(GiveawayEntry.id)).where(GiveawayEntry.giveaway_id == giveaway_id)
    ).scalar_one()


def draw_winner(session: Session, giveaway_id: int, *, rng: random.Random | None = None) -> GiveawayEntry:
    giveaway = _get_or_raise(session, giveaway_id)
    entries = list(
        session.execute(select(GiveawayEntry).where(GiveawayEntry.giveaway_id == giveaway_id)).scalars().all()
    )
    if not entries:
        raise NoEntriesError("No entries to draw from.")
    winner = (rng or random).choice(entries)
    giveaway.winner_subscriber_id = winner.subscriber_id
    session.commit()
    return winner


def fulfill_giveaway(session: Session, giveaway_id: int, notes: str | None = None) -> Giveaway:
    giveaway = _get_or_raise(session, giveaway_id)
    giveaway.fulfilled_at = utcnow()
    giveaway.fulfillment_notes = notes or None
    session.commit()
    session.refresh(giveaway)
    return giveaway


def serialize_giveaway(giveaway: Giveaway, *, entry_count: int | None = None) -> dict[str, Any]:
    data = {
        "id": giveaway.id,
        "name": giveaway.name,
        "description": giveaway.description,
        "start_date": giveaway.start_date,
        "end_date": giveaway.end_date,
        "rules": giveaway.rules,
        "winner_subscriber_id": giveaway.winner_subscriber_id,
        "fulfilled_at": giveaway.fulfilled_at.isoformat() if giveaway.fulfilled_at else None,
        "fulfillment_notes": giveaway.fulfillment_notes,
        "created_at": giveaway.created_at.isoformat() if giveaway.created_at else None,
    }
    if entry_count is not None:
        data["entry_count"] = entry_count
    return data
