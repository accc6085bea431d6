from __future__ import annotations

from dataclasses import dataclass, field
import os

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Setting
from .store import decode_json


JSON_SETTING_KEYS = frozenset(
    {
        "site.hero_paragraphs",
        "site.appeared_on",
        "site.recent_essays",
        "site.about_help_cards",
        "site.social_links",
    }
)
SETTING_KEYS = JSON_SETTING_KEYS | {
    "site.title",
    "site.description",
    "site.hero_heading",
    "site.hero_subheading",
    "site.hero_cta_text",
    "site.hero_image_path",
    "site.hero_image_alt",
    "site.about_html",
    "site.about_long_html",
    "site.newsletter_embed_url",
    "integrations.github_user",
    "integrations.youtube_channel_id",
    "integrations.substack_feed_url",
    "integrations.openai_model",
    "mailgun.domain",
    "mailgun.from",
    "mailgun.base_url",
}


@dataclass(frozen=True)
class HeroConfig:
    heading: str
    subheading: str
    cta_text: str
    paragraphs: list = field(default_factory=list)
    image: str = ""
    image_alt: str = ""


@dataclass(frozen=True)
class SiteConfig:
    title: str
    description: str
    hero: HeroConfig
    about_html: str = ""
    about_long_html: str = ""
    newsletter_embed_url: str = ""
    appeared_on: list = field(default_factory=list)
    recent_essays: list = field(default_factory=list)
    about_help_cards: list = field(default_factory=list)
    social_links: list = field(default_factory=list)
    github_users: list[str] = field(default_factory=list)
    youtube_channel_id: str | None = None
    substack_feed_url: str | None = None
    mailgun_domain: str | None = None
    mailgun_from: str | None = None
    mailgun_base_url: str | None = None
    openai_model: str | None = None


def _text(values: dict[str, Setting], key: str, default: str = "") -> str:
    row = values.get(key)
    if row is None or not row.value:
        return default
    return row.value


def _optional(values: dict[str, Setting], key: str, env_name: str | None = None) -> str | None:
    value = _text(values, key).strip()
    if not value and env_name:
        value = os.getenv(env_name, "").strip()
    return value or None


def _json_list(values: dict[str, Setting], key: str) -> list:
    row = values.get(key)
    if row is None:
        return []
    decoded = decode_json(key, row.value, [])
    return decoded if isinstance(decoded, list) else []


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def load_site_config(session: Session) -> SiteConfig:
    values = {row.key: row for row in session.execute(select(Setting)).scalars().all()}
    hero = HeroConfig(
        heading=_text(values, "site.hero_heading", "Hi, welcome."),
        subheading=_text(values, "site.hero_subheading", ""),
        cta_text=_text(values, "site.hero_cta_text", "Read the latest"),
        paragraphs=_json_list(values, "site.hero_paragraphs"),
        image=_text(values, "site.hero_image_path", ""),
        image_alt=_text(values, "site.hero_image_alt", ""),
    )
    return SiteConfig(
        title=_text(values, "site.title", "Personal Hub"),
        description=_text(values, "site.description", ""),
        hero=hero,
        about_html=_text(values, "site.about_html"),
        about_long_html=_text(values, "site.about_long_html"),
        newsletter_embed_url=_text(values, "site.newsletter_embed_url"),
        appeared_on=_json_list(values, "site.appeared_on"),
        recent_essays=_json_list(values, "site.recent_essays"),
        about_help_cards=_json_list(values, "site.about_help_cards"),
        social_links=_json_list(values, "site.social_links"),
        github_users=split_csv(_optional(values, "integrations.github_user", "GITHUB_USER")),
        youtube_channel_id=_optional(values, "integrations.youtube_channel_id", "YOUTUBE_CHANNEL_ID"),
        substack_feed_url=_optional(values, "integrations.substack_feed_url", "SUBSTACK_FEED_URL"),
        mailgun_domain=_optional(values, "mailgun.domain"),
        mailgun_from=_optional(values, "mailgun.from"),
        mailgun_base_url=_optional(values, "mailgun.base_url"),
        openai_model=_optional(values, "integrations.openai_model"),
    )
