from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from audience.tokens import verify_unsubscribe_token
from content.items import list_items, serialize_item
from db.models import Item, as_utc
from siteconfig import SiteConfig
from .deps import get_session, get_site_config

router = APIRouter(tags=["public"])

APPEARED_ON_LIMIT = 6
HOME_SECTION_LIMIT = 3


def _items(items: list[Item]) -> list[dict]:
    return [serialize_item(item) for item in items]


def _featured_or_latest(session: Session, item_type: str, limit: int = HOME_SECTION_LIMIT) -> list[Item]:
    featured = list_items(session, item_type, featured_only=True, limit=limit)
    return featured or list_items(session, item_type, limit=limit)


def _sort_key(item: Item) -> datetime:
    return as_utc(item.published_at or item.created_at)


def _page(site: SiteConfig, title: str | None = None, **content) -> dict:
    return {
        "site": {
            "title": site.title,
            "description": site.description,
            "social_links": site.social_links,
        },
        "title": title or site.title,
        "current_year": datetime.now().year,
        **content,
    }


@router.get("/")
def home(
    session: Session = Depends(get_session),
    site: SiteConfig = Depends(get_site_config),
) -> dict:
    social = list_items(session, "x_post", limit=5) + list_items(session, "linkedin_post", limit=5)
    social.sort(key=_sort_key, reverse=True)
    return _page(
        site,
        hero=asdict(site.hero),
        appeared_on=site.appeared_on[:APPEARED_ON_LIMIT],
        recent_essays=site.recent_essays,
        newsletter_embed_url=site.newsletter_embed_url,
        open_source=_items(_featured_or_latest(session, "github")),
        featured_apps=_items(_featured_or_latest(session, "app")),
        videos=_items(list_items(session, "youtube", limit=HOME_SECTION_LIMIT)),
        newsletter_posts=_items(list_items(session, "substack", limit=HOME_SECTION_LIMIT)),
        features=_items(list_items(session, "feature", featured_only=True, limit=12)),
        social_posts=_items(social[:HOME_SECTION_LIMIT]),
    )


@router.get("/projects")
def projects(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Projects", projects=_items(list_items(session, "github")))


@router.get("/videos")
def videos(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Videos", videos=_items(list_items(session, "youtube")))


@router.get("/newsletter")
def newsletter(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(
        site,
        "Newsletter",
        newsletter_embed_url=site.newsletter_embed_url,
        posts=_items(list_items(session, "substack", limit=20)),
    )


@router.get("/products")
def products(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Products", products=_items(list_items(session, "product")))


@router.get("/apps")
def apps(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Apps & Games", apps=_items(list_items(session, "app")))


@router.get("/features")
def features(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Features & Press", features=_items(list_items(session, "feature")))


@router.get("/about")
def about(session: Session = Depends(get_session), site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(
        site,
        "About",
        about_html=site.about_long_html or site.about_html,
        help_cards=site.about_help_cards,
        hero_image=site.hero.image,
        hero_image_alt=site.hero.image_alt,
        apps=_items(_featured_or_latest(session, "app")),
    )


@router.get("/privacy")
def privacy(site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Privacy Policy")


@router.get("/terms")
def terms(site: SiteConfig = Depends(get_site_config)) -> dict:
    return _page(site, "Terms of Service")


@router.get("/unsubscribe")
def unsubscribe_page(token: Optional[str] = None, site: SiteConfig = Depends(get_site_config)) -> dict:
    email = verify_unsubscribe_token(token)
    return _page(site, "Unsubscribe", token=token, email=email, invalid=email is None)
