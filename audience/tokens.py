"""Stateless unsubscribe links.

A token is ``b64url(email) + "." + b64url(HMAC-SHA256(secret, email))`` with
padding stripped, so a link proves it was issued for an address without a
database lookup.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os

DEFAULT_SECRET = "unsubscribe-secret"


def _secret() -> bytes:
    return (os.getenv("UNSUBSCRIBE_SECRET") or DEFAULT_SECRET).encode("utf-8")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def _sign(email: str) -> str:
    digest = hmac.new(_secret(), email.encode("utf-8"), hashlib.sha256).digest()
    return _b64encode(digest)


def generate_unsubscribe_token(email: str) -> str:
    normalized = email.strip().lower()
    return f"{_b64encode(normalized.encode('utf-8'))}.{_sign(normalized)}"


def verify_unsubscribe_token(token: str | None) -> str | None:
    """Return the normalized email a token was issued for, or None."""
    if not token:
        return None
    parts = token.split(".")
    if len(parts) != 2 or not all(parts):
        return None
    encoded_email, signature = parts
    try:
        decoded = _b64decode(encoded_email).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    # Non-canonical encodings decode to the same bytes; reject them.
    if _b64encode(decoded.encode("utf-8")) != encoded_email:
        return None
    # Tokens are only issued for normalized addresses.
    email = decoded.strip().lower()
    if email != decoded:
        return None
    if not hmac.compare_digest(signature.encode("ascii", "replace"), _sign(email).encode("ascii")):
        return None
    return email
