from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging

from sqlalchemy.orm import Session

from db.models import Item
from llm.summarizer import summarize_and_update_item
from .items import set_blurb
from .text import plain_blurb

logger = logging.getLogger(__name__)

# Shorter sources are not worth an API call; the local blurb covers them.
MIN_SUMMARY_CHARS = 160


@dataclass
class SyncStats:
    processed: int = 0
    created: int = 0
    summarized: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def refresh_blurb(
    session: Session,
    item: Item,
    source_text: str | None,
    stats: SyncStats,
    *,
    summarization: bool = True,
    prompt_version: str,
    instruction: str | None = None,
) -> None:
    """Summarize long sources, otherwise store the local plain-text blurb."""
    text = (source_text or "").strip()
    if summarization and len(text) > MIN_SUMMARY_CHARS:
        result = summarize_and_update_item(
            session,
            item.id,
            text,
            prompt_version=prompt_version,
            instruction=instruction,
        )
        if result.summary:
            stats.summarized += 1
            return
        if result.error:
            stats.errors.append({"item_id": item.id, "title": item.title, "error": result.error})
    if text:
        set_blurb(session, item.id, plain_blurb(text))
