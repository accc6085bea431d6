from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import ITEM_TYPES, Item, utcnow
from .text import to_csv

UPDATABLE_FIELDS = (
    "title",
    "description",
    "blurb",
    "image_url",
    "embed_html",
    "tags",
    "published_at",
    "featured",
    "visible",
    "source_url",
)
NON_NULL_FIELDS = frozenset({"title", "source_url", "featured", "visible"})


class ItemNotFoundError(LookupError):
    pass


def list_items(
    session: Session,
    item_type: str,
    *,
    featured_only: bool = False,
    limit: int | None = None,
    include_hidden: bool = False,
) -> list[Item]:
    stmt = select(Item).where(Item.type == item_type)
    if not include_hidden:
        stmt = stmt.where(Item.visible.is_(True))
    if featured_only:
        stmt = stmt.where(Item.featured.is_(True))
    stmt = stmt.order_by(
        Item.published_at.is_(None),
        Item.published_at.desc(),
        Item.created_at.desc(),
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(session.execute(stmt).scalars().all())


def get_item(session: Session, item_id: int) -> Item | None:
    return session.get(Item, item_id)


def create_item(session: Session, data: Mapping[str, Any]) -> Item:
    item_type = data.get("type")
    if item_type not in ITEM_TYPES:
        raise ValueError(f"Unsupported item type: {item_type}")
    title = (data.get("title") or "").strip()
    if not title:
        raise ValueError("title is required")
    source_url = (data.get("source_url") or "").strip()
    if not source_url:
        raise ValueError("source_url is required")

    now = utcnow()
    visible = data.get("visible")
    item = Item(
        type=item_type,
        source_id=data.get("source_id") or None,
        source_url=source_url,
        title=title,
        description=data.get("description"),
        blurb=data.get("blurb") or None,
        image_url=data.get("image_url") or None,
        embed_html=data.get("embed_html") or None,
        tags=to_csv(data.get("tags")),
        published_at=data.get("published_at") or now,
        featured=bool(data.get("featured")),
        visible=True if visible is None else bool(visible),
        created_at=now,
        updated_at=now,
    )
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def update_item(session: Session, item_id: int, data: Mapping[str, Any]) -> Item:
    item = session.get(Item, item_id)
    if item is None:
        raise ItemNotFoundError("Item not found")
    changed = False
    for field in UPDATABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in NON_NULL_FIELDS and value is None:
            raise ValueError(f"{field} must not be null")
        if field == "tags":
            value = to_csv(value)
        elif field in {"featured", "visible"}:
            value = bool(value)
        setattr(item, field, value)
        changed = True
    if not changed:
        return item
    item.updated_at = utcnow()
    session.commit()
    session.refresh(item)
    return item


def delete_item(session: Session, item_id: int) -> bool:
    item = session.get(Item, item_id)
    if item is None:
        return False
    session.delete(item)
    session.commit()
    return True


def set_featured(session: Session, item_id: int, featured: bool) -> Item:
    return update_item(session, item_id, {"featured": featured})


def set_visibility(session: Session, item_id: int, visible: bool) -> Item:
    return update_item(session, item_id, {"visible": visible})


def set_blurb(session: Session, item_id: int, blurb: str | None) -> bool:
    if not blurb:
        return False
    item = session.get(Item, item_id)
    if item is None:
        return False
    item.blurb = blurb
    item.updated_at = utcnow()
    session.commit()
    return True


def upsert_synced_item(
    session: Session,
    normalized: Mapping[str, Any],
    update_fields: tuple[str, ...],
) -> tuple[Item, bool]:
    """Insert or refresh a synced item keyed by ``(type, source_url)``.

    Only ``update_fields`` are rewritten on an existing row; identity fields
    and curation flags (featured, visible) stay as the admin left them.
    Returns the item and whether it was newly created.
    """
    existing = session.execute(
        select(Item).where(
            Item.type == normalized["type"],
            Item.source_url == normalized["source_url"],
        )
    ).scalar_one_or_none()
    now = utcnow()
    if existing is not None:
        for field in update_fields:
            setattr(existing, field, normalized.get(field))
        existing.updated_at = now
        session.commit()
        return existing, False

    item = Item(
        type=normalized["type"],
        source_id=normalized.get("source_id"),
        source_url=normalized["source_url"],
        title=normalized.get("title") or normalized["source_url"],
        description=normalized.get("description"),
        blurb=normalized.get("blurb"),
        image_url=normalized.get("image_url"),
        embed_html=normalized.get("embed_html"),
        tags=normalized.get("tags"),
        published_at=normalized.get("published_at"),
        featured=False,
        visible=True,
        created_at=now,
        updated_at=now,
    )
    session.add(item)
    session.commit()
    session.refresh(item)
    return item, True


def serialize_item(item: Item) -> dict[str, Any]:
    return {
        "id": item.id,
        "type": item.type,
        "source_id": item.source_id,
        "source_url": item.source_url,
        "title": item.title,
        "description": item.description,
        "blurb": item.blurb,
        "image_url": item.image_url,
        "embed_html": item.embed_html,
        "tags": item.tags,
        "tag_list": [tag.strip() for tag in (item.tags or "").split(",") if tag.strip()],
        "published_at": _iso(item.published_at),
        "featured": item.featured,
        "visible": item.visible,
        "created_at": _iso(item.created_at),
        "updated_at": _iso(item.updated_at),
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
