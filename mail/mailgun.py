from __future__ import annotations

import base64
from dataclasses import dataclass
import json
import os
from typing import Any, Iterable, Mapping
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

from siteconfig.site import SiteConfig

DEFAULT_BASE_URL = "https://api.mailgun.net"


class MailgunError(RuntimeError):
    pass


@dataclass(frozen=True)
class MailgunConfig:
    api_key: str
    domain: str
    sender: str
    base_url: str = DEFAULT_BASE_URL
    timeout_s: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.domain and self.sender)


@dataclass(frozen=True)
class SentMessage:
    message_id: str | None
    message: str | None


def load_mailgun_config(site: SiteConfig | None = None) -> MailgunConfig:
    """Read Mailgun credentials from env; domain, sender and base URL settings win."""
    domain = (site.mailgun_domain if site else None) or os.getenv("MAILGUN_DOMAIN", "")
    sender = (site.mailgun_from if site else None) or os.getenv("MAIL_FROM", "")
    base_url = (site.mailgun_base_url if site else None) or os.getenv("MAILGUN_BASE_URL", DEFAULT_BASE_URL)
    return MailgunConfig(
        api_key=os.getenv("MAILGUN_API_KEY", "").strip(),
        domain=domain.strip(),
        sender=sender.strip(),
        base_url=(base_url.strip() or DEFAULT_BASE_URL).rstrip("/"),
        timeout_s=int(os.getenv("MAILGUN_TIMEOUT_S", "30")),
    )


def _auth_header(api_key: str) -> str:
    token = base64.b64encode(f"api:{api_key}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def send_email(
    config: MailgunConfig,
    *,
    to: str | Iterable[str],
    subject: str,
    html: str | None = None,
    text: str | None = None,
    tags: Iterable[str] = (),
    campaign_id: int | None = None,
    variables: Mapping[str, Any] | None = None,
) -> SentMessage:
    if not config.is_configured:
        raise MailgunError("Mailgun is not configured. Set MAILGUN_API_KEY, MAILGUN_DOMAIN, and MAIL_FROM.")

    fields: list[tuple[str, str]] = [("from", config.sender)]
    recipients = [to] if isinstance(to, str) else list(to)
    fields.extend(("to", recipient) for recipient in recipients)
    fields.append(("subject", subject))
    if html:
        fields.append(("html", html))
    if text:
        fields.append(("text", text))
    fields.extend(("o:tag", tag) for tag in tags)
    if campaign_id is not None:
        fields.append(("o:campaign", str(campaign_id)))
    if variables:
        fields.append(("h:X-Mailgun-Variables", json.dumps(dict(variables))))

    req = urlrequest.Request(
        url=f"{config.base_url}/v3/{config.domain}/messages",
        data=urlencode(fields).encode("utf-8"),
        method="POST",
        headers={
            "Authorization": _auth_header(config.api_key),
            "Content-Type": "application/x-www-form-urlencoded",
        },
    )
    try:
        with urlrequest.urlopen(req, timeout=config.timeout_s) as resp:
            payload = json.loads(resp.read().decode("utf-8") or "{}")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")[:300]
        raise MailgunError(f"Mailgun send failed ({exc.code}): {detail}") from exc
    except URLError as exc:
        raise MailgunError(f"Mailgun unreachable: {exc.reason}") from exc
    return SentMessage(message_id=payload.get("id"), message=payload.get("message"))
