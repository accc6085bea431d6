from __future__ import annotations

import os
from typing import Iterator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from db import session as db_session
from siteconfig import SiteConfig, load_site_config, split_csv


def get_session() -> Iterator[Session]:
    session = db_session.SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_site_config(session: Session = Depends(get_session)) -> SiteConfig:
    return load_site_config(session)


def _trusted_proxies() -> set[str]:
    return set(split_csv(os.getenv("TRUSTED_PROXIES")))


def client_ip(request: Request) -> str | None:
    """Return the caller's address.

    ``X-Forwarded-For`` is only honoured when the direct peer is listed in
    ``TRUSTED_PROXIES``; the rightmost hop that is not a trusted proxy wins.
    """
    peer = request.client.host if request.client else None
    trusted = _trusted_proxies()
    if peer is None or peer not in trusted:
        return peer
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return hops[0] if hops else peer
