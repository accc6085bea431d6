#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
import yaml

from db.session import SessionLocal, init_db
from siteconfig import SETTING_KEYS, get_all_settings, update_settings

DEFAULT_SEED = Path(__file__).resolve().parents[1] / "seeds" / "settings.yaml"


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = ArgumentParser(description="Seed site settings from a YAML file")
    parser.add_argument("--file", default=str(DEFAULT_SEED))
    parser.add_argument("--overwrite", action="store_true", help="Replace settings that already have a value")
    parser.add_argument("--init-db", action="store_true", help="Create missing tables before seeding")
    args = parser.parse_args()

    seed_path = Path(args.file)
    if not seed_path.exists():
        raise SystemExit(f"[seed-settings] seed file not found: {seed_path}")
    seeds = yaml.safe_load(seed_path.read_text(encoding="utf-8")) or {}
    if not isinstance(seeds, dict):
        raise SystemExit("[seed-settings] seed file must contain a mapping of setting keys")
    unknown = sorted(set(seeds) - SETTING_KEYS)
    if unknown:
        raise SystemExit(f"[seed-settings] unknown setting keys: {', '.join(unknown)}")

    if args.init_db:
        init_db()

    session = SessionLocal()
    try:
        existing = get_all_settings(session)
        updates = {
            key: value
            for key, value in seeds.items()
            if args.overwrite or key not in existing
        }
        touched = update_settings(session, updates)
        print(f"[seed-settings] wrote {len(touched)} setting(s), kept {len(seeds) - len(touched)}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
