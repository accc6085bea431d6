from __future__ import annotations

import hashlib
import hmac
from os import getenv

from fastapi import Cookie, Header, HTTPException, Response

ADMIN_COOKIE = "admin_session"
SESSION_MAX_AGE_S = 7 * 24 * 60 * 60


def _digest(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


def verify_admin_token(token: str | None) -> bool:
    expected = getenv("ADMIN_TOKEN", "")
    if not token or not expected:
        return False
    return hmac.compare_digest(_digest(expected), _digest(token))


def token_from_request(authorization: str | None, cookie: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    return cookie or None


def require_admin(
    authorization: str | None = Header(default=None),
    admin_session: str | None = Cookie(default=None),
) -> None:
    if not verify_admin_token(token_from_request(authorization, admin_session)):
        raise HTTPException(status_code=401, detail="Unauthorized")


def set_admin_session(response: Response, token: str) -> None:
    response.set_cookie(
        key=ADMIN_COOKIE,
        value=token,
        max_age=SESSION_MAX_AGE_S,
        httponly=True,
        samesite="lax",
        secure=getenv("APP_ENV", "development") == "production",
    )


def clear_admin_session(response: Response) -> None:
    response.delete_cookie(key=ADMIN_COOKIE)
