from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
import logging
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from audience.subscribers import split_tags
from audience.tokens import generate_unsubscribe_token
from content.feeds import parse_timestamp
from db.models import Campaign, CampaignRecipient, Subscriber, utcnow
from siteconfig.site import load_site_config
from . import mailgun
from .mailgun import MailgunConfig, SentMessage

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "subject", "html_body", "text_body", "scheduled_for")
NON_NULL_FIELDS = frozenset({"name", "subject", "html_body"})

Mailer = Callable[..., SentMessage]


class CampaignError(ValueError):
    pass


class CampaignNotFoundError(LookupError):
    pass


@dataclass(frozen=True)
class SendResult:
    sent: int
    failed: int

    def to_dict(self) -> dict:
        return asdict(self)


def _scheduled(value: datetime | str | None) -> datetime | None:
    if isinstance(value, datetime):
        return value
    return parse_timestamp(value)


def _get_or_raise(session: Session, campaign_id: int) -> Campaign:
    campaign = session.get(Campaign, campaign_id)
    if campaign is None:
        raise CampaignNotFoundError("Campaign not found")
    return campaign


def list_campaigns(session: Session, *, limit: int = 50) -> list[Campaign]:
    stmt = select(Campaign).order_by(Campaign.created_at.desc(), Campaign.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def get_campaign(session: Session, campaign_id: int) -> Campaign:
    return _get_or_raise(session, campaign_id)


def create_campaign(session: Session, data: Mapping[str, Any]) -> Campaign:
    for field in ("name", "subject", "html_body"):
        if not (data.get(field) or "").strip():
            raise CampaignError(f"{field} is required")
    campaign = Campaign(
        name=data["name"].strip(),
        subject=data["subject"].strip(),
        html_body=data["html_body"],
        text_body=data.get("text_body") or None,
        scheduled_for=_scheduled(data.get("scheduled_for")),
        status="draft",
    )
    session.add(campaign)
    session.commit()
    session.refresh(campaign)
    return campaign


def update_campaign(session: Session, campaign_id: int, data: Mapping[str, Any]) -> Campaign:
    campaign = _get_or_raise(session, campaign_id)
    if campaign.status != "draft":
        raise CampaignError("Only draft campaigns can be edited.")
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in NON_NULL_FIELDS and value is None:
            raise CampaignError(f"{field} must not be null")
        if field == "scheduled_for":
            value = _scheduled(value)
        setattr(campaign, field, value)
    session.commit()
    session.refresh(campaign)
    return campaign


def delete_campaign(session: Session, campaign_id: int) -> None:
    campaign = _get_or_raise(session, campaign_id)
    if campaign.status != "draft":
        raise CampaignError("Only draft campaigns can be deleted.")
    session.delete(campaign)
    session.commit()


def recipient_counts(session: Session, campaign_id: int) -> dict[str, int]:
    rows = session.execute(
        select(CampaignRecipient.status, func.count(CampaignRecipient.id))
        .where(CampaignRecipient.campaign_id == campaign_id)
        .group_by(CampaignRecipient.status)
    ).all()
    return {status: count for status, count in rows}


def select_recipients(
    session: Session,
    include_tags: Iterable[str] = (),
    exclude_tags: Iterable[str] = (),
) -> list[Subscriber]:
    """Live subscribers carrying every include tag and none of the exclude tags."""
    include = set(split_tags(list(include_tags)))
    exclude = set(split_tags(list(exclude_tags)))
    subscribers = session.execute(
        select(Subscriber).where(Subscriber.unsubscribed_at.is_(None)).order_by(Subscriber.id)
    ).scalars().all()
    selected = []
    for subscriber in subscribers:
        tags = set(split_tags(subscriber.tags))
        if include and not include.issubset(tags):
            continue
        if exclude & tags:
            continue
        selected.append(subscriber)
    return selected


def send_campaign(
    session: Session,
    campaign_id: int,
    *,
    include_tags: Iterable[str] = (),
    exclude_tags: Iterable[str] = (),
    config: MailgunConfig | None = None,
    mailer: Mailer | None = None,
) -> SendResult:
    """Send a campaign to its tag-filtered audience, one message per subscriber.

    Recipient rows and the ``sending`` status are committed before any network
    call. Each send is isolated: a failure marks that row ``failed`` and the
    loop moves on. Rows that already have a provider message id are never sent
    again, so calling this again on a ``sending`` campaign only retries rows
    that did not go out. The campaign becomes ``sent`` once nothing failed.
    """
    config = config or mailgun.load_mailgun_config(load_site_config(session))
    mailer = mailer or mailgun.send_email
    if not config.is_configured:
        raise CampaignError("Mailgun is not configured.")

    campaign = _get_or_raise(session, campaign_id)
    if campaign.status == "sent":
        raise CampaignError("Campaign already sent.")

    audience = select_recipients(session, include_tags, exclude_tags)
    if not audience:
        raise CampaignError("No matching subscribers to send to.")

    recorded = {
        row.subscriber_id: row
        for row in session.execute(
            select(CampaignRecipient).where(CampaignRecipient.campaign_id == campaign_id)
        ).scalars()
    }
    try:
        for subscriber in audience:
            if subscriber.id not in recorded:
                row = CampaignRecipient(campaign_id=campaign_id, subscriber_id=subscriber.id, status="queued")
                session.add(row)
                recorded[subscriber.id] = row
        campaign.status = "sending"
        session.commit()
    except Exception:
        session.rollback()
        raise

    pending = [row for row in recorded.values() if not row.message_id and row.subscriber.unsubscribed_at is None]
    outcomes: dict[int, tuple[str | None, str | None]] = {}
    for row in pending:
        subscriber = row.subscriber
        try:
            message = mailer(
                config,
                to=subscriber.email,
                subject=campaign.subject,
                html=campaign.html_body,
                text=campaign.text_body,
                tags=["campaign"],
                campaign_id=campaign.id,
                variables={
                    "subscriber_id": subscriber.id,
                    "email": subscriber.email,
                    "unsubscribe_token": generate_unsubscribe_token(subscriber.email),
                },
            )
        except Exception as exc:
            logger.warning("Campaign %s: send to subscriber %s failed: %s", campaign.id, subscriber.id, exc)
            outcomes[row.id] = (None, str(exc) or exc.__class__.__name__)
            continue
        outcomes[row.id] = (message.message_id, None)

    now = utcnow()
    sent = failed = 0
    try:
        for row in pending:
            message_id, error = outcomes[row.id]
            if error is not None:
                row.status = "failed"
                row.error = error
                failed += 1
                continue
            row.status = "sent"
            row.message_id = message_id
            row.error = None
            row.last_event_at = now
            sent += 1
        if failed == 0:
            campaign.status = "sent"
            campaign.sent_at = now
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info("Campaign %s: sent=%d failed=%d", campaign.id, sent, failed)
    return SendResult(sent=sent, failed=failed)


def serialize_campaign(campaign: Campaign, *, counts: Mapping[str, int] | None = None) -> dict[str, Any]:
    data = {
        "id": campaign.id,
        "name": campaign.name,
        "subject": campaign.subject,
        "html_body": campaign.html_body,
        "text_body": campaign.text_body,
        "status": campaign.status,
        "scheduled_for": campaign.scheduled_for.isoformat() if campaign.scheduled_for else None,
        "sent_at": campaign.sent_at.isoformat() if campaign.sent_at else None,
        "created_at": campaign.created_at.isoformat() if campaign.created_at else None,
    }
    if counts is not None:
        data["recipient_counts"] = dict(counts)
    return data
