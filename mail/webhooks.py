from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import hashlib
import hmac
import json
import logging
import os
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from content.feeds import parse_timestamp
from db.models import CampaignRecipient, MailEvent, utcnow

logger = logging.getLogger(__name__)

STATUS_BY_EVENT = {
    "delivered": "sent",
    "opened": "opened",
    "clicked": "clicked",
    "complained": "complained",
    "bounced": "bounced",
    "unsubscribed": "unsubscribed",
}
TIMESTAMP_FIELDS = {
    "opened": "opened_at",
    "clicked": "clicked_at",
    "bounced": "bounced_at",
    "complained": "complained_at",
    "unsubscribed": "unsubscribed_at",
}


@dataclass(frozen=True)
class MailWebhookEvent:
    event: str | None
    email: str | None
    message_id: str | None
    campaign_id: str | None
    happened_at: datetime | None
    payload: dict = field(default_factory=dict)


def _epoch(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return parse_timestamp(str(value))


def _campaign_ref(value: Any) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("id") or value.get("name")
    return str(value) if value not in (None, "") else None


def normalize_webhook(payload: Mapping[str, Any] | None) -> MailWebhookEvent | None:
    """Flatten Mailgun's ``event-data`` envelope or the legacy flat form."""
    if not payload:
        return None
    data = payload.get("event-data")
    if isinstance(data, Mapping):
        headers = (data.get("message") or {}).get("headers") or {}
        return MailWebhookEvent(
            event=data.get("event"),
            email=data.get("recipient"),
            message_id=headers.get("message-id") or headers.get("Message-Id") or data.get("message-id"),
            campaign_id=_campaign_ref(data.get("campaigns")),
            happened_at=_epoch(data.get("timestamp")),
            payload=dict(data),
        )
    return MailWebhookEvent(
        event=payload.get("event"),
        email=payload.get("recipient"),
        message_id=payload.get("Message-Id") or payload.get("message-id") or payload.get("messageId"),
        campaign_id=_campaign_ref(payload.get("campaign")),
        happened_at=_epoch(payload.get("timestamp")) or utcnow(),
        payload=dict(payload),
    )


def signing_key() -> str | None:
    return os.getenv("MAILGUN_WEBHOOK_SIGNING_KEY", "").strip() or None


def verify_signature(payload: Mapping[str, Any], key: str) -> bool:
    """Check ``HMAC-SHA256(key, timestamp + token)`` against the posted signature."""
    block = payload.get("signature")
    if not isinstance(block, Mapping):
        block = payload
    timestamp = str(block.get("timestamp") or "")
    token = str(block.get("token") or "")
    signature = str(block.get("signature") or "")
    if not (timestamp and token and signature):
        return False
    expected = hmac.new(key.encode("utf-8"), f"{timestamp}{token}".encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def record_mail_event(session: Session, event: MailWebhookEvent) -> MailEvent:
    row = MailEvent(
        provider="mailgun",
        event_type=event.event,
        message_id=event.message_id,
        email=event.email,
        campaign_id=event.campaign_id,
        payload_json=json.dumps(event.payload, default=str),
        happened_at=event.happened_at,
    )
    session.add(row)
    session.commit()
    return row


def _message_id_variants(message_id: str) -> set[str]:
    # The send API returns "<id>", webhook headers usually carry the bare id.
    bare = message_id.strip().strip("<>")
    return {message_id, bare, f"<{bare}>"}


def apply_recipient_status(session: Session, event: MailWebhookEvent) -> int:
    """Update recipient rows matching the event's message id; returns the row count."""
    if not event.message_id:
        return 0
    status = STATUS_BY_EVENT.get(event.event or "", "sent")
    rows = session.execute(
        select(CampaignRecipient).where(CampaignRecipient.message_id.in_(_message_id_variants(event.message_id)))
    ).scalars().all()
    now = utcnow()
    stamp_field = TIMESTAMP_FIELDS.get(status)
    for row in rows:
        row.status = status
        row.last_event_at = now
        if stamp_field and getattr(row, stamp_field) is None:
            setattr(row, stamp_field, now)
    if rows:
        session.commit()
    else:
        logger.debug("No campaign recipient for message %s", event.message_id)
    return len(rows)
