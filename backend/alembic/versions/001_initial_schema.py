"""Initial Adspirer schema: users, API keys, platform tokens, accounts, metrics, chat, onboarding.

Revision ID: 001
Revises:
Create Date: 2025-03-04

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False)


def _user_id(unique: bool = False):
    return sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, unique=unique)


def _user_fk():
    return sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "users" in insp.get_table_names():
        return  # Already applied (e.g. from create_all)

    # ── Users & keys ──
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=True, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "api_keys",
        _id(),
        _user_id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("key_value", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.text("true")),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("request_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key_value"),
    )
    op.create_index("ix_api_keys_user", "api_keys", ["user_id"], unique=False)

    # ── Platform tokens ──
    for table, extra in (
        ("amazon_tokens", [sa.Column("token_scope", sa.String(255), nullable=True)]),
        ("google_tokens", []),
    ):
        op.create_table(
            table,
            _id(),
            _user_id(unique=True),
            sa.Column("access_token", sa.Text(), nullable=False),
            sa.Column("refresh_token", sa.Text(), nullable=False),
            *extra,
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("last_refreshed_at", sa.DateTime(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
            _user_fk(),
            sa.PrimaryKeyConstraint("id"),
        )

    op.create_table(
        "token_refresh_log",
        _id(),
        _user_id(),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("refreshed_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_token_refresh_user_time", "token_refresh_log", ["user_id", "refreshed_at"], unique=False)

    # ── Advertiser accounts ──
    op.create_table(
        "advertiser_accounts",
        _id(),
        _user_id(),
        sa.Column("profile_id", sa.String(64), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("marketplace", sa.String(32), nullable=True),
        sa.Column("account_type", sa.String(32), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="active"),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "profile_id", name="uq_advertiser_account_profile"),
    )
    op.create_table(
        "google_advertiser_accounts",
        _id(),
        _user_id(),
        sa.Column("customer_id", sa.String(32), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=True, server_default="active"),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "customer_id", name="uq_google_account_customer"),
    )

    # ── Campaign metrics ──
    op.create_table(
        "campaign_metrics",
        _id(),
        _user_id(),
        sa.Column("profile_id", sa.String(64), nullable=False),
        sa.Column("campaign_id", sa.String(64), nullable=False),
        sa.Column("campaign_name", sa.String(512), nullable=True),
        sa.Column("ad_group_id", sa.String(64), nullable=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("impressions", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("cost", sa.Float(), nullable=True, server_default="0"),
        sa.Column("conversions", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("sales", sa.Float(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_campaign_metrics_user_date", "campaign_metrics", ["user_id", "date"], unique=False)
    op.create_index("ix_campaign_metrics_campaign", "campaign_metrics", ["campaign_id"], unique=False)

    op.create_table(
        "google_campaign_metrics",
        _id(),
        _user_id(),
        sa.Column("customer_id", sa.String(32), nullable=False),
        sa.Column("campaign_id", sa.String(64), nullable=False),
        sa.Column("campaign_name", sa.String(512), nullable=True),
        sa.Column("ad_group_id", sa.String(64), nullable=True),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("impressions", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("cost", sa.Float(), nullable=True, server_default="0"),
        sa.Column("conversions", sa.Float(), nullable=True, server_default="0"),
        sa.Column("conversion_value", sa.Float(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_google_metrics_user_date", "google_campaign_metrics", ["user_id", "date"], unique=False)
    op.create_index("ix_google_metrics_campaign", "google_campaign_metrics", ["campaign_id"], unique=False)

    # ── Chat ──
    op.create_table(
        "chat_conversations",
        _id(),
        _user_id(),
        sa.Column("title", sa.String(255), nullable=True, server_default="New Conversation"),
        *_timestamps(),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_chat_conversations_user_updated", "chat_conversations", ["user_id", "updated_at"], unique=False,
    )
    op.create_table(
        "chat_messages",
        _id(),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["conversation_id"], ["chat_conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("conversation_id", "sequence", name="uq_chat_messages_conversation_seq"),
    )

    # ── Onboarding ──
    op.create_table(
        "onboarding_progress",
        _id(),
        _user_id(unique=True),
        sa.Column("current_step", sa.Integer(), nullable=True, server_default="1"),
        sa.Column("is_complete", sa.Boolean(), nullable=True, server_default=sa.text("false")),
        sa.Column("last_updated", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "business_core",
        _id(),
        _user_id(unique=True),
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("industry", sa.String(255), nullable=True),
        sa.Column("company_size", sa.String(64), nullable=True),
        sa.Column("marketplaces", sa.JSON(), nullable=True),
        sa.Column("main_goals", sa.JSON(), nullable=True),
        sa.Column("monthly_ad_spend", sa.String(64), nullable=True),
        sa.Column("website", sa.String(512), nullable=True),
        *_timestamps(),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "brand_identity",
        _id(),
        _user_id(unique=True),
        sa.Column("brand_name", sa.String(255), nullable=False),
        sa.Column("brand_description", sa.Text(), nullable=True),
        sa.Column("brand_voice", sa.JSON(), nullable=True),
        sa.Column("target_audience", sa.JSON(), nullable=True),
        sa.Column("brand_values", sa.JSON(), nullable=True),
        sa.Column("primary_color", sa.String(32), nullable=True),
        sa.Column("secondary_color", sa.String(32), nullable=True),
        sa.Column("logo_url", sa.String(1024), nullable=True),
        *_timestamps(),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "products_services",
        _id(),
        _user_id(unique=True),
        sa.Column("product_types", sa.JSON(), nullable=True),
        sa.Column("competitive_advantage", sa.JSON(), nullable=True),
        sa.Column("target_markets", sa.JSON(), nullable=True),
        sa.Column("top_selling_products", sa.JSON(), nullable=True),
        sa.Column("pricing_strategy", sa.String(255), nullable=True),
        *_timestamps(),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "creative_examples",
        _id(),
        _user_id(unique=True),
        sa.Column("ad_examples", sa.JSON(), nullable=True),
        sa.Column("creative_preferences", sa.JSON(), nullable=True),
        sa.Column("preferred_ad_formats", sa.JSON(), nullable=True),
        sa.Column("successful_campaigns", sa.JSON(), nullable=True),
        sa.Column("competitor_creative_urls", sa.JSON(), nullable=True),
        sa.Column("brand_guidelines", sa.JSON(), nullable=True),
        sa.Column("brand_guidelines_url", sa.String(1024), nullable=True),
        *_timestamps(),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "performance_context",
        _id(),
        _user_id(unique=True),
        sa.Column("target_roas", sa.Float(), nullable=True),
        sa.Column("target_acos", sa.Float(), nullable=True),
        sa.Column("target_cpa", sa.Float(), nullable=True),
        sa.Column("monthly_ad_budget", sa.Float(), nullable=True),
        sa.Column("key_metrics", sa.JSON(), nullable=True),
        sa.Column("current_performance", sa.Text(), nullable=True),
        sa.Column("performance_goals", sa.Text(), nullable=True),
        sa.Column("seasonal_trends", sa.Text(), nullable=True),
        sa.Column("benchmarks", sa.JSON(), nullable=True),
        *_timestamps(),
        _user_fk(),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "users" not in insp.get_table_names():
        return

    for table in (
        "performance_context", "creative_examples", "products_services", "brand_identity",
        "business_core", "onboarding_progress", "chat_messages", "chat_conversations",
        "google_campaign_metrics", "campaign_metrics", "google_advertiser_accounts",
        "advertiser_accounts", "token_refresh_log", "google_tokens", "amazon_tokens",
        "api_keys", "users",
    ):
        op.drop_table(table)
