from __future__ import annotations

from typing import List, Optional, Union
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from analytics.recorder import track_event
from audience.subscribers import mark_unsubscribed, split_tags, upsert_subscriber
from audience.tokens import generate_unsubscribe_token, verify_unsubscribe_token
from .deps import client_ip, get_session
from .ratelimit import rate_limit, subscribe_limiter, track_limiter

router = APIRouter(prefix="/api", tags=["api"])

FP_COOKIE = "fp_id"
FP_MAX_AGE_S = 400 * 24 * 60 * 60


class TrackRequest(BaseModel):
    event: str = Field(min_length=1, max_length=50)
    path: str = Field(min_length=1, max_length=500)
    referer: Optional[str] = Field(default=None, max_length=500)
    utm_source: Optional[str] = Field(default=None, max_length=100)
    utm_medium: Optional[str] = Field(default=None, max_length=100)
    utm_campaign: Optional[str] = Field(default=None, max_length=100)
    utm_content: Optional[str] = Field(default=None, max_length=100)
    utm_term: Optional[str] = Field(default=None, max_length=100)


class SubscribeRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=120)
    tags: Optional[Union[str, List[str]]] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None


class UnsubscribeRequest(BaseModel):
    token: str = Field(min_length=10)


def _utm(payload: BaseModel) -> dict:
    return {
        "utm_source": payload.utm_source,
        "utm_medium": payload.utm_medium,
        "utm_campaign": payload.utm_campaign,
        "utm_content": payload.utm_content,
        "utm_term": payload.utm_term,
    }


@router.post("/track", status_code=204, dependencies=[Depends(rate_limit(track_limiter))])
def track(
    payload: TrackRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> Response:
    response = Response(status_code=204)
    fp_id = request.cookies.get(FP_COOKIE)
    if not fp_id:
        fp_id = str(uuid.uuid4())
        response.set_cookie(
            key=FP_COOKIE,
            value=fp_id,
            max_age=FP_MAX_AGE_S,
            httponly=False,
            samesite="lax",
        )
    track_event(
        session,
        event=payload.event,
        path=payload.path,
        referer=payload.referer or request.headers.get("referer"),
        utm=_utm(payload),
        fp_id=fp_id,
        ip=client_ip(request),
        ua=request.headers.get("user-agent"),
    )
    return response


@router.post("/subscribe", dependencies=[Depends(rate_limit(subscribe_limiter))])
def subscribe(
    payload: SubscribeRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> dict:
    tags = split_tags(payload.tags)
    if "site" not in tags:
        tags.append("site")
    subscriber = upsert_subscriber(
        session,
        email=payload.email,
        name=payload.name,
        source="site",
        tags=tags,
        utm=_utm(payload),
        referer=request.headers.get("referer"),
        resubscribe=True,
    )
    return {"success": True, "unsubscribe_token": generate_unsubscribe_token(subscriber.email)}


@router.post("/unsubscribe")
def unsubscribe(payload: UnsubscribeRequest, session: Session = Depends(get_session)) -> dict:
    email = verify_unsubscribe_token(payload.token)
    if not email:
        raise HTTPException(status_code=400, detail="Invalid unsubscribe token")
    if mark_unsubscribed(session, email) is None:
        raise HTTPException(status_code=404, detail="Subscriber not found")
    return {"success": True}
