from __future__ import annotations

from datetime import UTC, datetime
import hashlib
import hmac

from audience.subscribers import upsert_subscriber
from db.models import CampaignRecipient, MailEvent, Subscriber, as_utc
from mail import campaigns as campaign_service
from mail import webhooks
from mail.mailgun import MailgunConfig, SentMessage

SIGNING_KEY = "whsec-test"


def _sent_recipient(session, message_id: str = "<20260419.1@mg.example.com>") -> CampaignRecipient:
    campaign = campaign_service.create_campaign(
        session, {"name": "April", "subject": "Hi", "html_body": "<p>Hi</p>"}
    )
    upsert_subscriber(session, email="reader@example.com")
    campaign_service.send_campaign(
        session,
        campaign.id,
        config=MailgunConfig(api_key="k", domain="mg.example.com", sender="me@example.com"),
        mailer=lambda config, **message: SentMessage(message_id=message_id, message="Queued."),
    )
    return session.query(CampaignRecipient).one()


def _event(event: str, message_id: str = "20260419.1@mg.example.com", **extra) -> dict:
    data = {
        "event": event,
        "recipient": "reader@example.com",
        "timestamp": 1767225600,
        "message": {"headers": {"message-id": message_id}},
        **extra,
    }
    return {"event-data": data}


def _signed(payload: dict, key: str = SIGNING_KEY) -> dict:
    timestamp, token = "1767225600", "random-token"
    signature = hmac.new(key.encode(), f"{timestamp}{token}".encode(), hashlib.sha256).hexdigest()
    return {**payload, "signature": {"timestamp": timestamp, "token": token, "signature": signature}}


def test_normalize_event_data_envelope() -> None:
    event = webhooks.normalize_webhook(_event("opened", campaigns=[{"id": "april"}]))

    assert event.event == "opened"
    assert event.email == "reader@example.com"
    assert event.message_id == "20260419.1@mg.example.com"
    assert event.campaign_id == "april"
    assert event.happened_at == datetime(2026, 1, 1, tzinfo=UTC)


def test_normalize_legacy_flat_payload() -> None:
    event = webhooks.normalize_webhook(
        {"event": "clicked", "recipient": "reader@example.com", "Message-Id": "<x@mg>", "campaign": "7"}
    )

    assert event.event == "clicked"
    assert event.message_id == "<x@mg>"
    assert event.campaign_id == "7"
    assert event.happened_at is not None
    assert webhooks.normalize_webhook({}) is None


def test_verify_signature() -> None:
    payload = _signed(_event("opened"))

    assert webhooks.verify_signature(payload, SIGNING_KEY) is True
    assert webhooks.verify_signature(payload, "other-key") is False
    assert webhooks.verify_signature(_event("opened"), SIGNING_KEY) is False


def test_opened_twice_keeps_first_timestamp(session, monkeypatch) -> None:
    row = _sent_recipient(session)
    first = datetime(2026, 4, 19, 10, 0, tzinfo=UTC)
    second = datetime(2026, 4, 19, 12, 0, tzinfo=UTC)
    event = webhooks.normalize_webhook(_event("opened"))

    monkeypatch.setattr(webhooks, "utcnow", lambda: first)
    assert webhooks.apply_recipient_status(session, event) == 1
    monkeypatch.setattr(webhooks, "utcnow", lambda: second)
    assert webhooks.apply_recipient_status(session, event) == 1

    session.refresh(row)
    assert row.status == "opened"
    assert as_utc(row.opened_at) == first
    assert as_utc(row.last_event_at) == second


def test_unknown_message_updates_nothing(session) -> None:
    _sent_recipient(session)
    event = webhooks.normalize_webhook(_event("opened", message_id="other@mg.example.com"))

    assert webhooks.apply_recipient_status(session, event) == 0


def test_delivered_and_unknown_events_map_to_sent(session) -> None:
    row = _sent_recipient(session)

    webhooks.apply_recipient_status(session, webhooks.normalize_webhook(_event("accepted")))
    session.refresh(row)

    assert row.status == "sent"
    assert row.opened_at is None


def test_record_mail_event_stores_payload(session) -> None:
    event = webhooks.normalize_webhook(_event("bounced"))

    webhooks.record_mail_event(session, event)

    stored = session.query(MailEvent).one()
    assert stored.event_type == "bounced"
    assert stored.message_id == "20260419.1@mg.example.com"
    assert '"recipient": "reader@example.com"' in stored.payload_json


def test_webhook_endpoint_rejects_bad_signature(client, session, monkeypatch) -> None:
    monkeypatch.setenv("MAILGUN_WEBHOOK_SIGNING_KEY", SIGNING_KEY)

    response = client.post("/webhooks/mailgun", json=_signed(_event("opened"), key="wrong"))

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid signature"
    assert session.query(MailEvent).count() == 0


def test_webhook_endpoint_applies_signed_events(client, session, monkeypatch) -> None:
    monkeypatch.setenv("MAILGUN_WEBHOOK_SIGNING_KEY", SIGNING_KEY)
    row = _sent_recipient(session)

    response = client.post("/webhooks/mailgun", json=_signed(_event("unsubscribed")))

    assert response.status_code == 200
    assert response.json() == {"success": True, "updated": 1}
    session.expire_all()
    assert session.get(CampaignRecipient, row.id).status == "unsubscribed"
    subscriber = session.query(Subscriber).filter_by(email="reader@example.com").one()
    assert subscriber.unsubscribed_at is not None
    assert session.query(MailEvent).count() == 1


def test_webhook_endpoint_accepts_unsigned_events_without_key(client, session) -> None:
    response = client.post("/webhooks/mailgun", json=_event("opened"))

    assert response.status_code == 200
    assert response.json() == {"success": True, "updated": 0}
