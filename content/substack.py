from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from .feeds import entry_published_at, fetch_feed
from .http import FetchError
from .items import upsert_synced_item
from .sync import SyncStats, refresh_blurb
from .text import strip_html

logger = logging.getLogger(__name__)

PROMPT_VERSION = "substack_v1"
UPDATE_FIELDS = ("title", "description", "image_url", "published_at")


def _image(entry: Any) -> str | None:
    for media in entry.get("media_content") or []:
        if media.get("url"):
            return media["url"]
    for enclosure in entry.get("enclosures") or []:
        if enclosure.get("href"):
            return enclosure["href"]
    return None


def _content(entry: Any) -> str:
    content = entry.get("content") or []
    if content and content[0].get("value"):
        return content[0]["value"]
    return entry.get("summary") or ""


def normalize_post(entry: Any) -> dict[str, Any]:
    link = entry.get("link") or None
    return {
        "type": "substack",
        "source_id": entry.get("id") or link,
        "source_url": link,
        "title": entry.get("title") or "",
        "description": _content(entry),
        "image_url": _image(entry),
        "published_at": entry_published_at(entry),
    }


def fetch_posts(feed_url: str | None) -> list[dict[str, Any]]:
    if not feed_url:
        return []
    try:
        entries = fetch_feed(feed_url, label="Substack RSS")
    except FetchError as exc:
        raise FetchError(f"Unable to fetch Substack feed: {exc}", status=exc.status) from exc
    return [normalize_post(entry) for entry in entries]


def sync_substack(session: Session, feed_url: str | None, *, summarization: bool = True) -> SyncStats:
    stats = SyncStats()
    posts = fetch_posts(feed_url)
    logger.info("Fetched %d posts from %s", len(posts), feed_url)
    for post in posts:
        if not post["source_url"]:
            continue
        item, created = upsert_synced_item(session, post, UPDATE_FIELDS)
        stats.processed += 1
        stats.created += int(created)
        refresh_blurb(
            session,
            item,
            strip_html(post["description"]),
            stats,
            summarization=summarization,
            prompt_version=PROMPT_VERSION,
        )
    return stats
