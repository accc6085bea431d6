#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import json
import logging
import os

from dotenv import load_dotenv

from content.github import sync_github
from content.http import FetchError
from content.substack import sync_substack
from content.youtube import sync_youtube
from db.session import SessionLocal
from siteconfig import load_site_config

SOURCES = ("github", "youtube", "substack")


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = ArgumentParser(description="Pull GitHub repos, YouTube videos and Substack posts into items")
    parser.add_argument("source", choices=[*SOURCES, "all"])
    parser.add_argument("--identifier", default=None, help="Override the configured username, channel id or feed url")
    parser.add_argument("--no-summarize", action="store_true", help="Skip LLM summaries and use local blurbs")
    args = parser.parse_args()

    sources = SOURCES if args.source == "all" else (args.source,)
    if args.identifier and len(sources) > 1:
        raise SystemExit("[sync-feeds] --identifier needs a single source")
    summarization = not args.no_summarize

    session = SessionLocal()
    failed = False
    try:
        site = load_site_config(session)
        identifiers = {
            "github": site.github_users,
            "youtube": site.youtube_channel_id,
            "substack": site.substack_feed_url,
        }
        runners = {
            "github": sync_github,
            "youtube": sync_youtube,
            "substack": sync_substack,
        }
        for source in sources:
            identifier = args.identifier or identifiers[source]
            if not identifier:
                print(f"[sync-feeds] {source}: not configured, skipped")
                continue
            try:
                stats = runners[source](session, identifier, summarization=summarization)
            except FetchError as exc:
                failed = True
                print(f"[sync-feeds] {source}: {exc}")
                continue
            print(f"[sync-feeds] {source}: {json.dumps(stats.to_dict())}")
    finally:
        session.close()
    if failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
