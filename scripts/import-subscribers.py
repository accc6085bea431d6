#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from audience.csv_import import import_subscribers_csv
from audience.subscribers import split_tags
from db.session import SessionLocal


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = ArgumentParser(description="Import subscribers from a CSV export")
    parser.add_argument("path")
    parser.add_argument("--source", default="manual")
    parser.add_argument("--tags", default="", help="Comma separated tags added to every imported row")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--map-email", default=None)
    parser.add_argument("--map-name", default=None)
    parser.add_argument("--map-created-at", default=None)
    parser.add_argument("--map-tags", default=None)
    parser.add_argument("--map-source", default=None)
    args = parser.parse_args()

    csv_path = Path(args.path)
    if not csv_path.exists():
        raise SystemExit(f"[import-subscribers] file not found: {csv_path}")

    mapping = {
        "email": args.map_email,
        "name": args.map_name,
        "created_at": args.map_created_at,
        "tags": args.map_tags,
        "source": args.map_source,
    }
    session = SessionLocal()
    try:
        result = import_subscribers_csv(
            session,
            csv_path.read_bytes(),
            source=args.source,
            extra_tags=split_tags(args.tags),
            mapping={key: value for key, value in mapping.items() if value},
            dry_run=args.dry_run,
        )
        print(json.dumps(result.to_dict(), indent=2))
    finally:
        session.close()


if __name__ == "__main__":
    main()
