from __future__ import annotations

from dataclasses import dataclass
import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from db.models import Item, utcnow
from llm.summarizer import summarize_and_update_item
from .http import FetchError, fetch_text
from .items import set_blurb
from .text import collapse_whitespace, truncate

logger = logging.getLogger(__name__)

PROMPT_VERSION = "app_v1"
INSTRUCTION = (
    "Write one friendly sentence (≤ 28 words) describing what this app or product does "
    "and who it helps. No hype, no emojis, plain English."
)
BODY_TEXT_MAX_CHARS = 4000
OG_DESCRIPTION_MAX_CHARS = 200


@dataclass(frozen=True)
class PageMetadata:
    title: str
    description: str
    image: str | None
    body_text: str


@dataclass(frozen=True)
class EnrichResult:
    summary: str | None
    image: str | None


def _meta(soup: BeautifulSoup, **attrs: str) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return (tag.get("content") or "").strip()


def parse_page(html: str) -> PageMetadata:
    soup = BeautifulSoup(html, "html.parser")
    title = _meta(soup, property="og:title")
    if not title and soup.title is not None:
        title = soup.title.get_text(strip=True)
    description = _meta(soup, property="og:description") or _meta(soup, name="description")
    body = soup.body.get_text(" ") if soup.body is not None else ""
    return PageMetadata(
        title=title,
        description=description,
        image=_meta(soup, property="og:image") or None,
        body_text=collapse_whitespace(body)[:BODY_TEXT_MAX_CHARS],
    )


def _fetch_page(url: str) -> str | None:
    try:
        return fetch_text(url, label="App page")
    except FetchError as exc:
        logger.warning("Failed to fetch app page %s: %s", url, exc)
        return None


def enrich_app_item(session: Session, item_id: int, *, force: bool = False) -> EnrichResult | None:
    """Fill an app item's blurb and image from the Open Graph tags of its page.

    Blurb and image are independent: each is only written when missing, unless
    ``force`` is set. A page that cannot be fetched leaves the item untouched.
    """
    item = session.get(Item, item_id)
    if item is None or item.type != "app" or not item.source_url:
        return None

    html = _fetch_page(item.source_url)
    if not html:
        return None
    page = parse_page(html)

    summary = None
    source = "\n\n".join(part for part in (page.title, page.description, page.body_text) if part)
    if source and (force or not item.blurb):
        result = summarize_and_update_item(
            session,
            item_id,
            source,
            prompt_version=PROMPT_VERSION,
            instruction=INSTRUCTION,
        )
        summary = result.summary
        if not summary and page.description:
            summary = truncate(page.description, OG_DESCRIPTION_MAX_CHARS)
            set_blurb(session, item_id, summary)

    image = urljoin(item.source_url, page.image) if page.image else None
    if image and (force or not item.image_url):
        item.image_url = image
        item.updated_at = utcnow()
        session.commit()

    return EnrichResult(summary=summary, image=image or item.image_url)
