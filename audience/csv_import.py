from __future__ import annotations

import csv
from dataclasses import asdict, dataclass, field
import io
import logging
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from content.feeds import parse_timestamp
from db.models import Subscriber, as_utc, utcnow
from .subscribers import get_subscriber_by_email, merge_tags

logger = logging.getLogger(__name__)

DEFAULT_MAPPING: dict[str, tuple[str, ...]] = {
    "email": ("email", "Email", "email_address", "Email Address", "recipient_email"),
    "name": ("name", "Name", "full_name", "Full Name"),
    "created_at": ("created", "created_at", "Created At", "timestamp", "Timestamp"),
    "tags": ("tags", "Tags", "tag", "Tag"),
    "source": ("source", "Source"),
}


@dataclass
class ImportResult:
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    mapping: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_mapping(headers: Iterable[str], mapping: Mapping[str, str | None] | None = None) -> dict[str, str]:
    headers = [header.strip() for header in headers if header]
    mapping = mapping or {}
    resolved: dict[str, str] = {}
    for key, candidates in DEFAULT_MAPPING.items():
        explicit = (mapping.get(key) or "").strip()
        if explicit and explicit in headers:
            resolved[key] = explicit
            continue
        for candidate in candidates:
            if candidate in headers:
                resolved[key] = candidate
                break
    return resolved


def read_records(data: bytes) -> list[dict[str, str]]:
    text = data.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames:
        reader.fieldnames = [name.strip() for name in reader.fieldnames]
    records = []
    for row in reader:
        # Overflow cells land under the None key.
        cleaned = {key: (value or "").strip() for key, value in row.items() if key is not None}
        if any(cleaned.values()):
            records.append(cleaned)
    return records


def import_subscribers_csv(
    session: Session,
    data: bytes,
    *,
    source: str = "manual",
    extra_tags: Iterable[str] = (),
    mapping: Mapping[str, str | None] | None = None,
    dry_run: bool = False,
) -> ImportResult:
    """Merge a CSV export into the subscriber list in a single transaction.

    A dry run executes exactly the same statements and rolls them back, so its
    counts always match a real run on the same input.
    """
    records = read_records(data)
    if not records:
        return ImportResult(dry_run=dry_run)

    resolved = resolve_mapping(records[0].keys(), mapping)
    result = ImportResult(total=len(records), mapping=resolved, dry_run=dry_run)
    extra = merge_tags(list(extra_tags))
    pending: dict[str, Subscriber] = {}

    try:
        for index, row in enumerate(records):
            line = index + 2
            email = (row.get(resolved["email"], "") if "email" in resolved else "").lower()
            if not email:
                result.skipped += 1
                continue
            if "@" not in email:
                result.skipped += 1
                result.errors.append({"row": line, "error": f"Invalid email: {email}"})
                continue

            name = row.get(resolved["name"]) if "name" in resolved else None
            created_at = parse_timestamp(row.get(resolved["created_at"])) if "created_at" in resolved else None
            row_tags = row.get(resolved["tags"]) if "tags" in resolved else None
            row_source = row.get(resolved["source"]) if "source" in resolved else None

            existing = pending.get(email) or get_subscriber_by_email(session, email)
            if existing is not None:
                existing.tags = merge_tags(existing.tags, row_tags, extra)
                current = as_utc(existing.created_at)
                if created_at is not None and (current is None or created_at < current):
                    existing.created_at = created_at
                if name:
                    existing.name = name
                if not existing.source:
                    existing.source = row_source or source
                pending[email] = existing
                result.updated += 1
                continue

            now = utcnow()
            subscriber = Subscriber(
                email=email,
                name=name or None,
                source=row_source or source,
                tags=merge_tags(extra, row_tags),
                created_at=created_at or now,
                last_seen_at=now,
            )
            session.add(subscriber)
            pending[email] = subscriber
            result.inserted += 1

        session.flush()
        if dry_run:
            session.rollback()
        else:
            session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        "CSV import %s: total=%d inserted=%d updated=%d skipped=%d",
        "dry run" if dry_run else "committed",
        result.total,
        result.inserted,
        result.updated,
        result.skipped,
    )
    return result
