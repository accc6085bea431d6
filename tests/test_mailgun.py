from __future__ import annotations

import base64
import io
import json
from urllib.error import HTTPError
from urllib.parse import parse_qsl

import pytest

from mail import mailgun
from mail.mailgun import MailgunConfig, MailgunError

CONFIG = MailgunConfig(api_key="key-test", domain="mg.example.com", sender="Hub <hub@example.com>")


class _Response(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def test_send_email_posts_form_with_basic_auth(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(req, timeout=None):
        captured["url"] = req.full_url
        captured["auth"] = req.get_header("Authorization")
        captured["fields"] = parse_qsl(req.data.decode("utf-8"))
        return _Response(json.dumps({"id": "<abc@mg.example.com>", "message": "Queued. Thank you."}).encode())

    monkeypatch.setattr(mailgun.urlrequest, "urlopen", fake_urlopen)

    sent = mailgun.send_email(
        CONFIG,
        to="reader@example.com",
        subject="Hello",
        html="<p>Hello</p>",
        tags=["campaign"],
        campaign_id=3,
        variables={"subscriber_id": 9},
    )

    assert sent.message_id == "<abc@mg.example.com>"
    assert captured["url"] == "https://api.mailgun.net/v3/mg.example.com/messages"
    assert captured["auth"] == "Basic " + base64.b64encode(b"api:key-test").decode()
    fields = dict(captured["fields"])
    assert fields["to"] == "reader@example.com"
    assert fields["o:tag"] == "campaign"
    assert fields["o:campaign"] == "3"
    assert json.loads(fields["h:X-Mailgun-Variables"]) == {"subscriber_id": 9}
    assert "text" not in fields


def test_send_email_wraps_http_errors(monkeypatch) -> None:
    def failing_urlopen(req, timeout=None):
        raise HTTPError(req.full_url, 401, "Unauthorized", {}, io.BytesIO(b"Forbidden"))

    monkeypatch.setattr(mailgun.urlrequest, "urlopen", failing_urlopen)

    with pytest.raises(MailgunError, match=r"Mailgun send failed \(401\): Forbidden"):
        mailgun.send_email(CONFIG, to="reader@example.com", subject="Hello", text="Hello")


def test_send_email_requires_configuration() -> None:
    with pytest.raises(MailgunError, match="not configured"):
        mailgun.send_email(MailgunConfig("", "", ""), to="reader@example.com", subject="Hello")
