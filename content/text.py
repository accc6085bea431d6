from __future__ import annotations

import re

from bs4 import BeautifulSoup

BLURB_MAX_CHARS = 220
ELLIPSIS = "…"

_FENCED_CODE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`]*`")
_MD_LINK = re.compile(r"\[(.*?)\]\(.*?\)")
_MD_MARKS = re.compile(r"[#>*_~]|\r|\n")
_WHITESPACE = re.compile(r"\s+")


def strip_html(html: str | None) -> str:
    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text(" ").strip()


def collapse_whitespace(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip()


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return f"{value[: limit - 3].strip()}{ELLIPSIS}"


def plain_blurb(text: str | None, limit: int = BLURB_MAX_CHARS) -> str | None:
    """Derive a short plain-text blurb from markdown or HTML source."""
    if not text:
        return None
    cleaned = _FENCED_CODE.sub(" ", text)
    cleaned = _INLINE_CODE.sub(" ", cleaned)
    if "<" in cleaned:
        cleaned = strip_html(cleaned)
    cleaned = _MD_LINK.sub(r"\1", cleaned)
    cleaned = _MD_MARKS.sub(" ", cleaned)
    cleaned = collapse_whitespace(cleaned)
    if not cleaned:
        return None
    return truncate(cleaned, limit)


def to_csv(tags) -> str | None:
    if not tags:
        return None
    if isinstance(tags, str):
        return tags
    if isinstance(tags, (list, tuple, set)):
        return ",".join(str(tag) for tag in tags)
    return None
