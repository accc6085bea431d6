from __future__ import annotations

import json
from typing import Any
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

USER_AGENT = "PersonalHub/1.0"
DEFAULT_TIMEOUT_S = 30


class FetchError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def fetch_text(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout: int = DEFAULT_TIMEOUT_S,
    label: str = "Fetch",
) -> str:
    merged = {"User-Agent": USER_AGENT}
    if headers:
        merged.update(headers)
    req = urlrequest.Request(url=url, method="GET", headers=merged)
    try:
        with urlrequest.urlopen(req, timeout=timeout) as resp:
            charset = resp.headers.get_content_charset() or "utf-8"
            return resp.read().decode(charset, errors="replace")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")[:300]
        raise FetchError(f"{label} error ({exc.code}): {detail}", status=exc.code) from exc
    except URLError as exc:
        raise FetchError(f"{label} unreachable: {exc.reason}") from exc


def fetch_json(
    url: str,
    *,
    headers: dict[str, str] | None = None,
    timeout: int = DEFAULT_TIMEOUT_S,
    label: str = "Fetch",
) -> Any:
    body = fetch_text(url, headers=headers, timeout=timeout, label=label)
    try:
        return json.loads(body)
    except ValueError as exc:
        raise FetchError(f"{label} returned invalid JSON") from exc
