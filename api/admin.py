from __future__ import annotations

from datetime import datetime
import json
import logging
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel, EmailStr, Field, model_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from analytics.recorder import analytics_summary
from audience import giveaways as giveaway_service
from audience.csv_import import import_subscribers_csv
from audience.subscribers import list_subscribers, serialize_subscriber, split_tags
from content import items as item_service
from content.app_metadata import enrich_app_item
from content.github import sync_github
from content.http import FetchError
from content.substack import sync_substack
from content.youtube import sync_youtube
from db.models import ITEM_TYPES, Item
from llm import openai_provider
from llm.summarizer import summarize_and_update_item
from mail import campaigns as campaign_service
from mail.mailgun import load_mailgun_config
from siteconfig import JSON_SETTING_KEYS, SETTING_KEYS, SiteConfig, get_all_settings, update_settings
from .audit import list_audit, log_admin_action
from .auth import clear_admin_session, require_admin, set_admin_session, verify_admin_token
from .deps import get_session, get_site_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])
guarded = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

ItemType = Literal["github", "youtube", "substack", "product", "app", "feature", "x_post", "linkedin_post"]
TagInput = Optional[Union[str, List[str]]]


def _reject_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} must not be null")


class LoginRequest(BaseModel):
    token: str


class ItemCreateRequest(BaseModel):
    type: ItemType
    title: str = Field(min_length=1)
    source_url: str = Field(min_length=1)
    source_id: Optional[str] = None
    description: Optional[str] = None
    blurb: Optional[str] = None
    image_url: Optional[str] = None
    embed_html: Optional[str] = None
    tags: TagInput = None
    published_at: Optional[datetime] = None
    featured: bool = False
    visible: bool = True


class ItemUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    source_url: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    blurb: Optional[str] = None
    image_url: Optional[str] = None
    embed_html: Optional[str] = None
    tags: TagInput = None
    published_at: Optional[datetime] = None
    featured: Optional[bool] = None
    visible: Optional[bool] = None

    @model_validator(mode="after")
    def _validate_nulls(self) -> "ItemUpdateRequest":
        _reject_nulls(self, ("title", "source_url", "featured", "visible"))
        return self


class FeatureRequest(BaseModel):
    featured: bool


class VisibilityRequest(BaseModel):
    visible: bool


class FetchRequest(BaseModel):
    identifier: Optional[str] = None
    summarization: bool = True


class CampaignCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    html_body: str = Field(min_length=1)
    text_body: Optional[str] = None
    scheduled_for: Optional[datetime] = None


class CampaignUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    subject: Optional[str] = Field(default=None, min_length=1)
    html_body: Optional[str] = Field(default=None, min_length=1)
    text_body: Optional[str] = None
    scheduled_for: Optional[datetime] = None

    @model_validator(mode="after")
    def _validate_nulls(self) -> "CampaignUpdateRequest":
        _reject_nulls(self, ("name", "subject", "html_body"))
        return self


class CampaignSendRequest(BaseModel):
    tag_include: TagInput = None
    tag_exclude: TagInput = None


class GiveawayCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    rules: Optional[str] = None


class GiveawayEntryRequest(BaseModel):
    email: EmailStr
    source: Optional[str] = None


class GiveawayFulfillRequest(BaseModel):
    notes: Optional[str] = None
    delivered_via: Optional[str] = None


def _item_or_404(session: Session, item_id: int) -> Item:
    item = item_service.get_item(session, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def _enrich_app(session: Session, item: Item) -> Item:
    if item.type == "app":
        enrich_app_item(session, item.id, force=True)
        session.refresh(item)
    return item


@router.post("/login")
def login(payload: LoginRequest, response: Response) -> dict:
    if not verify_admin_token(payload.token):
        raise HTTPException(status_code=401, detail="Invalid admin token")
    set_admin_session(response, payload.token)
    return {"success": True}


@router.post("/logout")
def logout(response: Response) -> dict:
    clear_admin_session(response)
    return {"success": True}


@guarded.get("")
@guarded.get("/dashboard")
def dashboard(
    session: Session = Depends(get_session),
    site: SiteConfig = Depends(get_site_config),
) -> dict:
    counts = dict(session.execute(select(Item.type, func.count(Item.id)).group_by(Item.type)).all())
    return {
        "analytics": analytics_summary(session, 7),
        "item_counts": {item_type: counts.get(item_type, 0) for item_type in ITEM_TYPES},
        "recent_subscribers": [serialize_subscriber(row) for row in list_subscribers(session, limit=10)],
        "campaigns": [
            campaign_service.serialize_campaign(row) for row in campaign_service.list_campaigns(session, limit=5)
        ],
        "mailgun_configured": load_mailgun_config(site).is_configured,
        "openai_configured": openai_provider.is_configured(),
    }


@guarded.get("/analytics/summary")
def get_analytics(days: int = Query(7, ge=1, le=365), session: Session = Depends(get_session)) -> dict:
    return analytics_summary(session, days)


@guarded.get("/items")
def list_admin_items(
    type: ItemType = "github",
    featured_only: bool = False,
    limit: Optional[int] = Query(None, ge=1, le=500),
    session: Session = Depends(get_session),
) -> dict:
    rows = item_service.list_items(session, type, featured_only=featured_only, limit=limit, include_hidden=True)
    return {"type": type, "items": [item_service.serialize_item(row) for row in rows]}


@guarded.post("/items")
def create_admin_item(payload: ItemCreateRequest, session: Session = Depends(get_session)) -> dict:
    try:
        item = item_service.create_item(session, payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("item.create", {"id": item.id, "type": item.type})
    item = _enrich_app(session, item)
    return {"success": True, "item": item_service.serialize_item(item)}


@guarded.get("/items/{item_id}")
def get_admin_item(item_id: int, session: Session = Depends(get_session)) -> dict:
    return item_service.serialize_item(_item_or_404(session, item_id))


@guarded.patch("/items/{item_id}")
def update_admin_item(item_id: int, payload: ItemUpdateRequest, session: Session = Depends(get_session)) -> dict:
    try:
        item = item_service.update_item(session, item_id, payload.model_dump(exclude_unset=True))
    except item_service.ItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Item not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("item.update", {"id": item_id})
    item = _enrich_app(session, item)
    return {"success": True, "item": item_service.serialize_item(item)}


@guarded.delete("/items/{item_id}")
def delete_admin_item(item_id: int, session: Session = Depends(get_session)) -> dict:
    if not item_service.delete_item(session, item_id):
        raise HTTPException(status_code=404, detail="Item not found")
    log_admin_action("item.delete", {"id": item_id})
    return {"success": True}


@guarded.post("/items/{item_id}/feature")
def feature_item(item_id: int, payload: FeatureRequest, session: Session = Depends(get_session)) -> dict:
    try:
        item = item_service.set_featured(session, item_id, payload.featured)
    except item_service.ItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Item not found") from exc
    log_admin_action("item.feature", {"id": item_id, "featured": payload.featured})
    return {"success": True, "item": item_service.serialize_item(item)}


@guarded.post("/items/{item_id}/visibility")
def item_visibility(item_id: int, payload: VisibilityRequest, session: Session = Depends(get_session)) -> dict:
    try:
        item = item_service.set_visibility(session, item_id, payload.visible)
    except item_service.ItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Item not found") from exc
    log_admin_action("item.visibility", {"id": item_id, "visible": payload.visible})
    return {"success": True, "item": item_service.serialize_item(item)}


@guarded.post("/items/{item_id}/resummarize")
def resummarize_item(item_id: int, session: Session = Depends(get_session)) -> dict:
    item = _item_or_404(session, item_id)
    text = f"{item.title}\n\n{item.description or ''}"
    result = summarize_and_update_item(session, item_id, text, prompt_version="admin_manual")
    log_admin_action("item.resummarize", {"id": item_id})
    return {"success": True, "summary": result.summary, "cached": result.cached, "error": result.error}


def _run_sync(kind: str, identifier: Any, missing: str, runner, summarization: bool) -> dict:
    if not identifier:
        raise HTTPException(status_code=400, detail=missing)
    try:
        stats = runner(identifier, summarization=summarization)
    except FetchError as exc:
        logger.error("%s fetch failed: %s", kind, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action(f"fetch.{kind}", {"identifier": identifier, "stats": stats.to_dict()})
    return {"success": True, "stats": stats.to_dict()}


@guarded.post("/fetch/github")
def fetch_github(
    payload: Optional[FetchRequest] = Body(default=None),
    session: Session = Depends(get_session),
    site: SiteConfig = Depends(get_site_config),
) -> dict:
    payload = payload or FetchRequest()
    users = split_tags(payload.identifier) if payload.identifier else site.github_users
    return _run_sync(
        "github",
        users,
        "Add a GitHub username in Settings before fetching.",
        lambda value, summarization: sync_github(session, value, summarization=summarization),
        payload.summarization,
    )


@guarded.post("/fetch/youtube")
def fetch_youtube(
    payload: Optional[FetchRequest] = Body(default=None),
    session: Session = Depends(get_session),
    site: SiteConfig = Depends(get_site_config),
) -> dict:
    payload = payload or FetchRequest()
    return _run_sync(
        "youtube",
        payload.identifier or site.youtube_channel_id,
        "Add a YouTube channel ID in Settings before fetching.",
        lambda value, summarization: sync_youtube(session, value, summarization=summarization),
        payload.summarization,
    )


@guarded.post("/fetch/substack")
def fetch_substack(
    payload: Optional[FetchRequest] = Body(default=None),
    session: Session = Depends(get_session),
    site: SiteConfig = Depends(get_site_config),
) -> dict:
    payload = payload or FetchRequest()
    return _run_sync(
        "substack",
        payload.identifier or site.substack_feed_url,
        "Add a Substack feed URL in Settings before fetching.",
        lambda value, summarization: sync_substack(session, value, summarization=summarization),
        payload.summarization,
    )


@guarded.get("/campaigns")
def list_admin_campaigns(
    limit: int = Query(50, ge=1, le=200),
    session: Session = Depends(get_session),
) -> dict:
    rows = campaign_service.list_campaigns(session, limit=limit)
    return {"campaigns": [campaign_service.serialize_campaign(row) for row in rows]}


@guarded.post("/campaigns")
def create_admin_campaign(payload: CampaignCreateRequest, session: Session = Depends(get_session)) -> dict:
    try:
        campaign = campaign_service.create_campaign(session, payload.model_dump())
    except campaign_service.CampaignError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("campaign.create", {"id": campaign.id})
    return {"success": True, "campaign": campaign_service.serialize_campaign(campaign)}


@guarded.get("/campaigns/{campaign_id}")
def get_admin_campaign(campaign_id: int, session: Session = Depends(get_session)) -> dict:
    try:
        campaign = campaign_service.get_campaign(session, campaign_id)
    except campaign_service.CampaignNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    counts = campaign_service.recipient_counts(session, campaign_id)
    return campaign_service.serialize_campaign(campaign, counts=counts)


@guarded.patch("/campaigns/{campaign_id}")
def update_admin_campaign(
    campaign_id: int,
    payload: CampaignUpdateRequest,
    session: Session = Depends(get_session),
) -> dict:
    try:
        campaign = campaign_service.update_campaign(session, campaign_id, payload.model_dump(exclude_unset=True))
    except campaign_service.CampaignNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except campaign_service.CampaignError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("campaign.update", {"id": campaign_id})
    return {"success": True, "campaign": campaign_service.serialize_campaign(campaign)}


@guarded.delete("/campaigns/{campaign_id}")
def delete_admin_campaign(campaign_id: int, session: Session = Depends(get_session)) -> dict:
    try:
        campaign_service.delete_campaign(session, campaign_id)
    except campaign_service.CampaignNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except campaign_service.CampaignError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("campaign.delete", {"id": campaign_id})
    return {"success": True}


@guarded.post("/campaigns/{campaign_id}/send")
def send_admin_campaign(
    campaign_id: int,
    payload: Optional[CampaignSendRequest] = Body(default=None),
    session: Session = Depends(get_session),
) -> dict:
    payload = payload or CampaignSendRequest()
    try:
        result = campaign_service.send_campaign(
            session,
            campaign_id,
            include_tags=split_tags(payload.tag_include),
            exclude_tags=split_tags(payload.tag_exclude),
        )
    except campaign_service.CampaignNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except campaign_service.CampaignError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("campaign.send", {"id": campaign_id, **result.to_dict()})
    return {"success": True, **result.to_dict()}


@guarded.get("/subscribers")
def list_admin_subscribers(
    limit: int = Query(50, ge=1, le=1000),
    session: Session = Depends(get_session),
) -> dict:
    return {"subscribers": [serialize_subscriber(row) for row in list_subscribers(session, limit=limit)]}


@guarded.post("/subscribers/import")
def import_admin_subscribers(
    file: UploadFile = File(...),
    source: str = Form("manual"),
    tags: str = Form(""),
    dry_run: bool = Form(False),
    map_email: Optional[str] = Form(None),
    map_name: Optional[str] = Form(None),
    map_created_at: Optional[str] = Form(None),
    map_tags: Optional[str] = Form(None),
    map_source: Optional[str] = Form(None),
    session: Session = Depends(get_session),
) -> dict:
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="CSV file is required")
    mapping = {
        "email": map_email,
        "name": map_name,
        "created_at": map_created_at,
        "tags": map_tags,
        "source": map_source,
    }
    try:
        result = import_subscribers_csv(
            session,
            data,
            source=source or "manual",
            extra_tags=split_tags(tags),
            mapping=mapping,
            dry_run=dry_run,
        )
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded") from exc
    if not dry_run:
        log_admin_action(
            "subscribers.import",
            {"source": source, "inserted": result.inserted, "updated": result.updated},
        )
    return {"success": True, "result": result.to_dict()}


@guarded.get("/giveaways")
def list_admin_giveaways(session: Session = Depends(get_session)) -> dict:
    rows = giveaway_service.list_giveaways(session)
    return {
        "giveaways": [
            giveaway_service.serialize_giveaway(row, entry_count=giveaway_service.count_entries(session, row.id))
            for row in rows
        ]
    }


@guarded.post("/giveaways")
def create_admin_giveaway(payload: GiveawayCreateRequest, session: Session = Depends(get_session)) -> dict:
    try:
        giveaway = giveaway_service.create_giveaway(session, payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("giveaway.create", {"id": giveaway.id})
    return {"success": True, "giveaway": giveaway_service.serialize_giveaway(giveaway)}


@guarded.post("/giveaways/{giveaway_id}/entries")
def add_giveaway_entry(
    giveaway_id: int,
    payload: GiveawayEntryRequest,
    session: Session = Depends(get_session),
) -> dict:
    try:
        entry, created = giveaway_service.add_entry(session, giveaway_id, payload.email, source=payload.source)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_admin_action("giveaway.entry", {"giveaway_id": giveaway_id, "subscriber_id": entry.subscriber_id})
    return {"success": True, "created": created}


@guarded.post("/giveaways/{giveaway_id}/draw")
def draw_giveaway(giveaway_id: int, session: Session = Depends(get_session)) -> dict:
    try:
        winner = giveaway_service.draw_winner(session, giveaway_id)
    except giveaway_service.GiveawayNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except giveaway_service.NoEntriesError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_admin_action("giveaway.draw", {"giveaway_id": giveaway_id, "subscriber_id": winner.subscriber_id})
    return {
        "success": True,
        "winner": {"subscriber_id": winner.subscriber_id, "email": winner.subscriber.email},
    }


@guarded.post("/giveaways/{giveaway_id}/fulfill")
def fulfill_giveaway(
    giveaway_id: int,
    payload: Optional[GiveawayFulfillRequest] = Body(default=None),
    session: Session = Depends(get_session),
) -> dict:
    payload = payload or GiveawayFulfillRequest()
    try:
        giveaway = giveaway_service.fulfill_giveaway(session, giveaway_id, payload.notes or payload.delivered_via)
    except giveaway_service.GiveawayNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_admin_action("giveaway.fulfill", {"giveaway_id": giveaway_id})
    return {"success": True, "giveaway": giveaway_service.serialize_giveaway(giveaway)}


@guarded.get("/settings")
def get_admin_settings(session: Session = Depends(get_session)) -> dict:
    return {"settings": get_all_settings(session)}


@guarded.post("/settings")
def update_admin_settings(
    payload: Dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
) -> dict:
    unknown = sorted(set(payload) - SETTING_KEYS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown settings: {', '.join(unknown)}")
    updates: dict[str, Any] = {}
    for key, value in payload.items():
        if key in JSON_SETTING_KEYS and isinstance(value, str) and value.strip():
            try:
                value = json.loads(value)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=f"{key} must be valid JSON") from exc
        updates[key] = value
    touched = update_settings(session, updates)
    log_admin_action("settings.update", {"keys": touched})
    return {"success": True, "keys": touched}


@guarded.get("/audit")
def get_audit_log(limit: int = Query(50, ge=1, le=500), session: Session = Depends(get_session)) -> dict:
    return {"entries": list_audit(session, limit=limit)}
