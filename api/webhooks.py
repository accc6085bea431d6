from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from audience.subscribers import mark_unsubscribed
from mail.webhooks import apply_recipient_status, normalize_webhook, record_mail_event, signing_key, verify_signature
from .audit import best_effort
from .deps import get_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/mailgun")
def mailgun_webhook(
    payload: Dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
) -> dict:
    key = signing_key()
    if key and not verify_signature(payload, key):
        logger.warning("Rejected Mailgun webhook with an invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    event = normalize_webhook(payload)
    if event is None:
        return {"success": True}
    record_mail_event(session, event)
    updated = apply_recipient_status(session, event)

    if event.event == "unsubscribed" and event.email:
        best_effort("webhook unsubscribe", mark_unsubscribed, session, event.email)
    return {"success": True, "updated": updated}
