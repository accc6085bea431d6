"""Feed fetching and date helpers shared by the YouTube and Substack syncs."""

from __future__ import annotations

from calendar import timegm
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
import logging
from typing import Any

import feedparser

from .http import fetch_text

logger = logging.getLogger(__name__)


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 or RFC 2822 timestamp into an aware UTC datetime."""
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            logger.debug("Unparseable timestamp %r", raw)
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def entry_published_at(entry: Any) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime.fromtimestamp(timegm(parsed), tz=UTC)
    for key in ("published", "updated"):
        value = parse_timestamp(entry.get(key))
        if value is not None:
            return value
    return None


def fetch_feed(url: str, *, label: str) -> list[Any]:
    """Download a feed and return its entries; fetch failures raise ``FetchError``."""
    body = fetch_text(url, headers={"Accept": "application/atom+xml, application/rss+xml, */*"}, label=label)
    parsed = feedparser.parse(body)
    if parsed.get("bozo") and not parsed.entries:
        logger.warning("%s feed at %s could not be parsed: %s", label, url, parsed.get("bozo_exception"))
    return list(parsed.entries)
