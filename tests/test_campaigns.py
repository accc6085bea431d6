from __future__ import annotations

import pytest

from audience.subscribers import mark_unsubscribed, upsert_subscriber
from db.models import CampaignRecipient
from mail import campaigns as campaign_service
from mail.campaigns import CampaignError
from mail.mailgun import MailgunConfig, SentMessage, load_mailgun_config
from siteconfig import load_site_config, update_settings

CONFIG = MailgunConfig(api_key="key-test", domain="mg.example.com", sender="Hub <hub@example.com>")


class FakeMailer:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[dict] = []

    def __call__(self, config, **message) -> SentMessage:
        if message["to"] in self.fail_for:
            raise RuntimeError("Mailgun send failed (500): upstream")
        self.sent.append(message)
        return SentMessage(message_id=f"<{len(self.sent)}.{message['to']}>", message="Queued. Thank you.")


def _campaign(session):
    return campaign_service.create_campaign(
        session,
        {"name": "April", "subject": "What I shipped", "html_body": "<p>Hello</p>", "text_body": "Hello"},
    )


def _recipients(session, campaign_id: int) -> dict[str, CampaignRecipient]:
    rows = session.query(CampaignRecipient).filter_by(campaign_id=campaign_id).all()
    return {row.subscriber.email: row for row in rows}


def test_create_campaign_starts_as_draft(session) -> None:
    campaign = campaign_service.create_campaign(
        session,
        {
            "name": "May",
            "subject": "Notes",
            "html_body": "<p>Hi</p>",
            "scheduled_for": "2026-05-01T09:00:00Z",
        },
    )

    assert campaign.status == "draft"
    assert campaign.scheduled_for is not None
    assert campaign_service.serialize_campaign(campaign)["status"] == "draft"


def test_create_campaign_requires_fields(session) -> None:
    with pytest.raises(CampaignError, match="subject is required"):
        campaign_service.create_campaign(session, {"name": "x", "subject": " ", "html_body": "<p/>"})


def test_update_campaign_rejects_null_for_required_fields(session) -> None:
    campaign = campaign_service.create_campaign(session, {"name": "May", "subject": "Notes", "html_body": "<p>Hi</p>"})

    with pytest.raises(CampaignError, match="name must not be null"):
        campaign_service.update_campaign(session, campaign.id, {"name": None})

    session.refresh(campaign)
    assert campaign.name == "May"


def test_send_requires_mailgun_config(session) -> None:
    campaign = _campaign(session)
    upsert_subscriber(session, email="reader@example.com")

    with pytest.raises(CampaignError, match="Mailgun is not configured"):
        campaign_service.send_campaign(session, campaign.id, config=MailgunConfig("", "", ""), mailer=FakeMailer())


def test_send_missing_campaign(session) -> None:
    with pytest.raises(campaign_service.CampaignNotFoundError):
        campaign_service.send_campaign(session, 404, config=CONFIG, mailer=FakeMailer())


def test_empty_audience_fails_without_recipient_rows(session) -> None:
    campaign = _campaign(session)
    upsert_subscriber(session, email="reader@example.com", tags="site")

    with pytest.raises(CampaignError, match="No matching subscribers"):
        campaign_service.send_campaign(
            session, campaign.id, include_tags=["vip"], config=CONFIG, mailer=FakeMailer()
        )

    session.refresh(campaign)
    assert campaign.status == "draft"
    assert session.query(CampaignRecipient).count() == 0


def test_one_failed_send_does_not_stop_the_rest(session) -> None:
    campaign = _campaign(session)
    for email in ("a@example.com", "b@example.com", "c@example.com"):
        upsert_subscriber(session, email=email)
    mailer = FakeMailer(fail_for={"b@example.com"})

    result = campaign_service.send_campaign(session, campaign.id, config=CONFIG, mailer=mailer)

    assert result.to_dict() == {"sent": 2, "failed": 1}
    rows = _recipients(session, campaign.id)
    assert rows["a@example.com"].status == "sent"
    assert rows["a@example.com"].message_id.startswith("<")
    assert rows["b@example.com"].status == "failed"
    assert "500" in rows["b@example.com"].error
    assert rows["c@example.com"].status == "sent"
    session.refresh(campaign)
    assert campaign.status == "sending"
    assert campaign.sent_at is None
    assert campaign_service.recipient_counts(session, campaign.id) == {"sent": 2, "failed": 1}


def test_resend_only_retries_rows_without_message_id(session) -> None:
    campaign = _campaign(session)
    for email in ("a@example.com", "b@example.com"):
        upsert_subscriber(session, email=email)
    campaign_service.send_campaign(
        session, campaign.id, config=CONFIG, mailer=FakeMailer(fail_for={"b@example.com"})
    )

    retry = FakeMailer()
    result = campaign_service.send_campaign(session, campaign.id, config=CONFIG, mailer=retry)

    assert result.to_dict() == {"sent": 1, "failed": 0}
    assert [message["to"] for message in retry.sent] == ["b@example.com"]
    session.refresh(campaign)
    assert campaign.status == "sent"
    assert campaign.sent_at is not None
    assert session.query(CampaignRecipient).count() == 2

    with pytest.raises(CampaignError, match="already sent"):
        campaign_service.send_campaign(session, campaign.id, config=CONFIG, mailer=retry)


def test_tag_filters_and_unsubscribed_are_respected(session) -> None:
    campaign = _campaign(session)
    upsert_subscriber(session, email="vip@example.com", tags="site,vip")
    upsert_subscriber(session, email="tester@example.com", tags="vip,test")
    upsert_subscriber(session, email="plain@example.com", tags="site")
    upsert_subscriber(session, email="gone@example.com", tags="vip")
    mark_unsubscribed(session, "gone@example.com")
    mailer = FakeMailer()

    campaign_service.send_campaign(
        session, campaign.id, include_tags=["vip"], exclude_tags=["test"], config=CONFIG, mailer=mailer
    )

    assert [message["to"] for message in mailer.sent] == ["vip@example.com"]
    message = mailer.sent[0]
    assert message["campaign_id"] == campaign.id
    assert message["subject"] == "What I shipped"
    assert message["variables"]["unsubscribe_token"]


def test_recipients_need_every_include_tag(session) -> None:
    upsert_subscriber(session, email="both@example.com", tags="vip,beta")
    upsert_subscriber(session, email="vip@example.com", tags="vip")
    upsert_subscriber(session, email="beta@example.com", tags="beta")

    selected = campaign_service.select_recipients(session, include_tags=["vip", "beta"])

    assert [subscriber.email for subscriber in selected] == ["both@example.com"]


def test_only_drafts_can_be_edited_or_deleted(session) -> None:
    campaign = _campaign(session)
    upsert_subscriber(session, email="reader@example.com")
    campaign_service.update_campaign(session, campaign.id, {"subject": "New subject"})
    campaign_service.send_campaign(session, campaign.id, config=CONFIG, mailer=FakeMailer())

    with pytest.raises(CampaignError):
        campaign_service.update_campaign(session, campaign.id, {"subject": "Too late"})
    with pytest.raises(CampaignError):
        campaign_service.delete_campaign(session, campaign.id)

    draft = _campaign(session)
    campaign_service.delete_campaign(session, draft.id)
    with pytest.raises(campaign_service.CampaignNotFoundError):
        campaign_service.get_campaign(session, draft.id)


def test_mailgun_settings_override_environment(session, monkeypatch) -> None:
    monkeypatch.setenv("MAILGUN_API_KEY", "key-env")
    monkeypatch.setenv("MAILGUN_DOMAIN", "env.example.com")
    monkeypatch.setenv("MAIL_FROM", "Env <env@example.com>")
    update_settings(session, {"mailgun.domain": "mg.example.com"})

    config = load_mailgun_config(load_site_config(session))

    assert config.api_key == "key-env"
    assert config.domain == "mg.example.com"
    assert config.sender == "Env <env@example.com>"
    assert config.base_url == "https://api.mailgun.net"
    assert config.is_configured is True
