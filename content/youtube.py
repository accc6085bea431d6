from __future__ import annotations

from html import escape
import logging
from typing import Any
from urllib.parse import quote

from sqlalchemy.orm import Session

from .feeds import entry_published_at, fetch_feed
from .http import FetchError
from .items import upsert_synced_item
from .sync import SyncStats, refresh_blurb

logger = logging.getLogger(__name__)

FEED_URL = "https://www.youtube.com/feeds/videos.xml"
PROMPT_VERSION = "youtube_v1"
UPDATE_FIELDS = ("title", "description", "image_url", "embed_html", "published_at")
EMBED_TEMPLATE = (
    '<iframe src="https://www.youtube.com/embed/{video_id}" title="{title}" allowfullscreen '
    'class="w-full aspect-video rounded-xl border border-slate-800"></iframe>'
)


def _entry_link(entry: Any) -> str | None:
    for link in entry.get("links") or []:
        if link.get("rel") == "alternate" and link.get("href"):
            return link["href"]
    return entry.get("link") or None


def _thumbnail(entry: Any) -> str | None:
    thumbnails = entry.get("media_thumbnail") or []
    if thumbnails and thumbnails[0].get("url"):
        return thumbnails[0]["url"]
    return None


def normalize_video(entry: Any) -> dict[str, Any]:
    video_id = entry.get("yt_videoid")
    title = entry.get("title") or ""
    description = entry.get("media_description") or entry.get("summary") or ""
    return {
        "type": "youtube",
        "source_id": video_id,
        "source_url": _entry_link(entry),
        "title": title,
        "description": description,
        "image_url": _thumbnail(entry),
        "embed_html": (
            EMBED_TEMPLATE.format(video_id=quote(video_id), title=escape(title, quote=True))
            if video_id
            else None
        ),
        "published_at": entry_published_at(entry),
    }


def fetch_videos(channel_id: str | None) -> list[dict[str, Any]]:
    if not channel_id:
        return []
    url = f"{FEED_URL}?channel_id={quote(channel_id)}"
    try:
        entries = fetch_feed(url, label="YouTube RSS")
    except FetchError as exc:
        raise FetchError(f"Unable to fetch YouTube feed: {exc}", status=exc.status) from exc
    return [normalize_video(entry) for entry in entries]


def sync_youtube(session: Session, channel_id: str | None, *, summarization: bool = True) -> SyncStats:
    stats = SyncStats()
    videos = fetch_videos(channel_id)
    logger.info("Fetched %d videos for channel %s", len(videos), channel_id)
    for video in videos:
        if not video["source_url"]:
            continue
        item, created = upsert_synced_item(session, video, UPDATE_FIELDS)
        stats.processed += 1
        stats.created += int(created)
        text = f"{video['title']}\n\n{video['description'] or ''}"
        refresh_blurb(
            session,
            item,
            text,
            stats,
            summarization=summarization,
            prompt_version=PROMPT_VERSION,
        )
    return stats
