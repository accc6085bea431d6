"""Content-hash keyed summarization cache in front of the OpenAI Responses API.

Every AI-derived blurb in the project goes through ``summarize_and_update_item``.
A ``summarization_log`` row is written for each successful generation and is
reused whenever the same item, model and trimmed source text come back.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from content.items import set_blurb
from db.models import SummarizationLog
from siteconfig.store import get_setting
from . import openai_provider

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = (
    "Summarize the content below in 1-2 sentences (max 45 words), plain English, "
    "highlight concrete value/what this is, avoid hype, no emojis. Return plain text only."
)


@dataclass(frozen=True)
class SummaryResult:
    summary: str | None
    cached: bool = False
    error: str | None = None


def hash_source(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def resolve_model(session: Session, model: str | None = None) -> str:
    if model:
        return model
    configured = (get_setting(session, "integrations.openai_model") or "").strip()
    return configured or openai_provider.default_model()


def get_cached_summary(session: Session, *, item_id: int, model: str, source_hash: str) -> str | None:
    row = session.execute(
        select(SummarizationLog)
        .where(
            SummarizationLog.item_id == item_id,
            SummarizationLog.model == model,
            SummarizationLog.source_hash == source_hash,
        )
        .order_by(SummarizationLog.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if row is None or not row.summary:
        return None
    return row.summary


def build_prompt(text: str, instruction: str | None = None) -> str:
    return f"{instruction or DEFAULT_INSTRUCTION}\n\nCONTENT:\n{text}"


def summarize(
    session: Session,
    *,
    item_id: int,
    text: str | None,
    model: str | None = None,
    prompt_version: str = "v1",
    instruction: str | None = None,
) -> SummaryResult:
    trimmed = (text or "").strip()
    if not trimmed:
        return SummaryResult(summary=None)

    model = resolve_model(session, model)
    source_hash = hash_source(trimmed)
    cached = get_cached_summary(session, item_id=item_id, model=model, source_hash=source_hash)
    if cached:
        return SummaryResult(summary=cached, cached=True)

    if not openai_provider.is_configured():
        logger.warning("OPENAI_API_KEY not configured; skipping summarization of item %s", item_id)
        return SummaryResult(summary=None)

    try:
        completion = openai_provider.complete(build_prompt(trimmed, instruction), model=model)
    except Exception as exc:
        logger.warning("Summarization failed for item %s: %s", item_id, exc)
        return SummaryResult(summary=None, error=str(exc) or "Summarization failed")

    if completion.text:
        session.add(
            SummarizationLog(
                item_id=item_id,
                model=model,
                source_hash=source_hash,
                summary=completion.text,
                prompt_version=prompt_version,
                tokens_in=completion.tokens_in,
                tokens_out=completion.tokens_out,
                cost_cents=openai_provider.estimate_cost_cents(
                    completion.tokens_in, completion.tokens_out
                ),
            )
        )
        session.commit()
    return SummaryResult(summary=completion.text or None)


def summarize_and_update_item(
    session: Session,
    item_id: int,
    text: str | None,
    *,
    model: str | None = None,
    prompt_version: str = "v1",
    instruction: str | None = None,
) -> SummaryResult:
    result = summarize(
        session,
        item_id=item_id,
        text=text,
        model=model,
        prompt_version=prompt_version,
        instruction=instruction,
    )
    if result.summary:
        set_blurb(session, item_id, result.summary)
    return result
