"""create personal hub schema

Revision ID: 3a7c1e9d2b40
Revises:
Create Date: 2026-10-19 09:00:00

Purpose:
- create the content, audience, mail, analytics and settings tables
- add the uniqueness and lookup indexes the services rely on

Touched tables / objects:
- settings, items, subscribers, campaigns, campaign_recipients, giveaways,
  giveaway_entries, events, mail_events, summarization_log, admin_audit
- partial unique index uq_items_synced_source on items(type, source_url) for synced types

Operational notes:
- items.source_url uniqueness only applies to github, youtube and substack rows;
  curated types (apps, products, features, posts) may share a url
"""

from alembic import op
import sqlalchemy as sa

revision = "3a7c1e9d2b40"
down_revision = None
branch_labels = None
depends_on = None


ITEM_TYPES = "'github', 'youtube', 'substack', 'product', 'app', 'feature', 'x_post', 'linkedin_post'"
SYNCED_ITEM_TYPES = "'github', 'youtube', 'substack'"
RECIPIENT_STATUSES = (
    "'queued', 'sent', 'failed', 'opened', 'clicked', 'bounced', 'complained', 'unsubscribed'"
)


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "settings",
        sa.Column("key", sa.Text(), primary_key=True),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("value_type", sa.Text(), nullable=False, server_default="text"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("value_type in ('text', 'json')", name="ck_settings_value_type"),
    )

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("source_id", sa.Text(), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("blurb", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("embed_html", sa.Text(), nullable=True),
        sa.Column("tags", sa.Text(), nullable=True),
        _ts("published_at"),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("visible", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(f"type in ({ITEM_TYPES})", name="ck_items_type"),
    )
    op.create_index("ix_items_type_visible", "items", ["type", "visible"])
    op.create_index(
        "uq_items_synced_source",
        "items",
        ["type", "source_url"],
        unique=True,
        postgresql_where=sa.text(f"type in ({SYNCED_ITEM_TYPES})"),
        sqlite_where=sa.text(f"type in ({SYNCED_ITEM_TYPES})"),
    )

    op.create_table(
        "subscribers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("source", sa.Text(), nullable=False, server_default="site"),
        sa.Column("tags", sa.Text(), nullable=False, server_default=""),
        sa.Column("utm_source", sa.Text(), nullable=True),
        sa.Column("utm_medium", sa.Text(), nullable=True),
        sa.Column("utm_campaign", sa.Text(), nullable=True),
        sa.Column("utm_content", sa.Text(), nullable=True),
        sa.Column("utm_term", sa.Text(), nullable=True),
        sa.Column("referer_at_signup", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        _ts("verified_at"),
        _ts("unsubscribed_at"),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("html_body", sa.Text(), nullable=False),
        sa.Column("text_body", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="draft"),
        _ts("scheduled_for"),
        _ts("sent_at"),
        _created_at(),
        sa.CheckConstraint("status in ('draft', 'sending', 'sent')", name="ck_campaigns_status"),
    )

    op.create_table(
        "campaign_recipients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("campaign_id", sa.Integer(), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subscriber_id", sa.Integer(), sa.ForeignKey("subscribers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="queued"),
        sa.Column("message_id", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        _ts("opened_at"),
        _ts("clicked_at"),
        _ts("bounced_at"),
        _ts("complained_at"),
        _ts("unsubscribed_at"),
        _ts("last_event_at"),
        _created_at(),
        sa.CheckConstraint(f"status in ({RECIPIENT_STATUSES})", name="ck_campaign_recipients_status"),
        sa.UniqueConstraint("campaign_id", "subscriber_id", name="uq_campaign_recipients_subscriber"),
    )
    op.create_index("ix_campaign_recipients_message_id", "campaign_recipients", ["message_id"])

    op.create_table(
        "giveaways",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Text(), nullable=True),
        sa.Column("end_date", sa.Text(), nullable=True),
        sa.Column("rules", sa.Text(), nullable=True),
        sa.Column(
            "winner_subscriber_id",
            sa.Integer(),
            sa.ForeignKey("subscribers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("fulfilled_at"),
        sa.Column("fulfillment_notes", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "giveaway_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("giveaway_id", sa.Integer(), sa.ForeignKey("giveaways.id", ondelete="CASCADE"), nullable=False),
        sa.Column("subscriber_id", sa.Integer(), sa.ForeignKey("subscribers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", sa.Text(), nullable=False, server_default="manual"),
        _created_at(),
        sa.UniqueConstraint("giveaway_id", "subscriber_id", name="uq_giveaway_entries_subscriber"),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event", sa.Text(), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("referer", sa.Text(), nullable=True),
        sa.Column("utm_source", sa.Text(), nullable=True),
        sa.Column("utm_medium", sa.Text(), nullable=True),
        sa.Column("utm_campaign", sa.Text(), nullable=True),
        sa.Column("utm_content", sa.Text(), nullable=True),
        sa.Column("utm_term", sa.Text(), nullable=True),
        sa.Column("fp_id", sa.Text(), nullable=True),
        sa.Column("ip_hash", sa.Text(), nullable=True),
        sa.Column("ua", sa.Text(), nullable=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_events_event_ts", "events", ["event", "ts"])

    op.create_table(
        "mail_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.Text(), nullable=False, server_default="mailgun"),
        sa.Column("event_type", sa.Text(), nullable=True),
        sa.Column("message_id", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("campaign_id", sa.Text(), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        _ts("happened_at"),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "summarization_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
        sa.Column("model", sa.Text(), nullable=False),
        sa.Column("source_hash", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("prompt_version", sa.Text(), nullable=False, server_default="v1"),
        sa.Column("tokens_in", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tokens_out", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_cents", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_summarization_log_lookup", "summarization_log", ["item_id", "model", "source_hash"])

    op.create_table(
        "admin_audit",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("meta_json", sa.Text(), nullable=False, server_default="{}"),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("admin_audit")
    op.drop_index("ix_summarization_log_lookup", table_name="summarization_log")
    op.drop_table("summarization_log")
    op.drop_table("mail_events")
    op.drop_index("ix_events_event_ts", table_name="events")
    op.drop_table("events")
    op.drop_table("giveaway_entries")
    op.drop_table("giveaways")
    op.drop_index("ix_campaign_recipients_message_id", table_name="campaign_recipients")
    op.drop_table("campaign_recipients")
    op.drop_table("campaigns")
    op.drop_table("subscribers")
    op.drop_index("uq_items_synced_source", table_name="items")
    op.drop_index("ix_items_type_visible", table_name="items")
    op.drop_table("items")
    op.drop_table("settings")
