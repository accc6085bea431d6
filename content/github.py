from __future__ import annotations

import logging
import os
from typing import Any, Iterable
from urllib.parse import quote, urlencode

from sqlalchemy.orm import Session

from siteconfig.site import split_csv
from .feeds import parse_timestamp
from .http import FetchError, fetch_json, fetch_text
from .items import upsert_synced_item
from .sync import SyncStats, refresh_blurb

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
PER_PAGE = 100
MAX_PAGES = 10
README_MAX_CHARS = 2000
PROMPT_VERSION = "github_v1"
INSTRUCTION = (
    "Summarize this open-source project in one crisp sentence (max 30 words). "
    "Mention what it does and who benefits. No marketing fluff, no emojis."
)
UPDATE_FIELDS = ("title", "description", "image_url", "tags", "published_at")


def _headers(token: str | None, accept: str) -> dict[str, str]:
    headers = {"Accept": accept}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _token(token: str | None) -> str | None:
    return token or os.getenv("GITHUB_TOKEN", "").strip() or None


def fetch_repos(username: str, *, token: str | None = None) -> list[dict[str, Any]]:
    if not username:
        return []
    repos: list[dict[str, Any]] = []
    headers = _headers(_token(token), "application/vnd.github+json")
    for page in range(1, MAX_PAGES + 1):
        query = urlencode({"sort": "pushed", "per_page": PER_PAGE, "page": page})
        url = f"{GITHUB_API}/users/{quote(username)}/repos?{query}"
        batch = fetch_json(url, headers=headers, label="GitHub API")
        if not isinstance(batch, list):
            raise FetchError("GitHub API returned an unexpected payload")
        repos.extend(batch)
        if len(batch) < PER_PAGE:
            break
    return repos


def fetch_readme(repo: dict[str, Any], *, token: str | None = None) -> str | None:
    owner = (repo.get("owner") or {}).get("login")
    name = repo.get("name")
    if not owner or not name:
        return None
    url = f"{GITHUB_API}/repos/{quote(owner)}/{quote(name)}/readme"
    try:
        text = fetch_text(
            url,
            headers=_headers(_token(token), "application/vnd.github.v3.raw"),
            label="GitHub README",
        )
    except FetchError as exc:
        logger.warning("Failed to fetch README for %s: %s", repo.get("full_name") or name, exc)
        return None
    return text[:README_MAX_CHARS] if text else None


def normalize_repo(repo: dict[str, Any]) -> dict[str, Any]:
    topics = repo.get("topics")
    return {
        "type": "github",
        "source_id": str(repo.get("id")) if repo.get("id") is not None else None,
        "source_url": repo.get("html_url"),
        "title": repo.get("name"),
        "description": repo.get("description") or "",
        "image_url": (repo.get("owner") or {}).get("avatar_url"),
        "tags": ",".join(topics) if isinstance(topics, list) and topics else None,
        "published_at": parse_timestamp(repo.get("pushed_at")),
    }


def sync_github(
    session: Session,
    usernames: str | Iterable[str],
    *,
    token: str | None = None,
    summarization: bool = True,
) -> SyncStats:
    if isinstance(usernames, str):
        usernames = split_csv(usernames)
    stats = SyncStats()
    for username in usernames:
        repos = fetch_repos(username, token=token)
        logger.info("Fetched %d repos for GitHub user %s", len(repos), username)
        for repo in repos:
            normalized = normalize_repo(repo)
            if not normalized["source_url"]:
                continue
            item, created = upsert_synced_item(session, normalized, UPDATE_FIELDS)
            stats.processed += 1
            stats.created += int(created)
            readme = fetch_readme(repo, token=token) if summarization else None
            base_text = readme or normalized["description"] or normalized["title"]
            refresh_blurb(
                session,
                item,
                base_text,
                stats,
                summarization=summarization,
                prompt_version=PROMPT_VERSION,
                instruction=INSTRUCTION,
            )
    return stats
