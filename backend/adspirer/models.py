"""
Adspirer — Database Models
Users and API keys, platform OAuth tokens, advertiser accounts, campaign metrics,
chat history and the onboarding wizard tables.
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Float, Integer, Boolean, DateTime,
    JSON, ForeignKey, Index, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from adspirer.database import Base


def _utcnow() -> datetime:
    """Naive UTC now — matches DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _user_fk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class Platform(str, enum.Enum):
    AMAZON = "amazon"
    GOOGLE = "google"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


ONBOARDING_FINAL_STEP = 7


# ══════════════════════════════════════════════════════════════════════
#  USERS & API KEYS
# ══════════════════════════════════════════════════════════════════════

class User(Base):
    """Advertiser account on Adspirer. Owns every user-scoped row."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default="user")  # user | admin
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_login_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_users_email", "email"),
    )


class ApiKey(Base):
    """Programmatic access key. Deactivated on revoke, never deleted."""
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    key_value: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    request_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_api_keys_user", "user_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  PLATFORM TOKENS
# ══════════════════════════════════════════════════════════════════════

class AmazonToken(Base):
    """Login-with-Amazon tokens. access/refresh tokens are Fernet-encrypted."""
    __tablename__ = "amazon_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_scope: Mapped[str] = mapped_column(String(255), default="advertising::campaign_management")
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_refreshed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    platform = Platform.AMAZON.value


class GoogleToken(Base):
    """Google OAuth tokens for the Ads API. Encrypted like AmazonToken."""
    __tablename__ = "google_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_refreshed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    platform = Platform.GOOGLE.value


class TokenRefreshLog(Base):
    """One row per refresh attempt, successful or not."""
    __tablename__ = "token_refresh_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    refreshed_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_token_refresh_user_time", "user_id", "refreshed_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  ADVERTISER ACCOUNTS
# ══════════════════════════════════════════════════════════════════════

class AdvertiserAccount(Base):
    """Amazon Ads profile cached at connect time."""
    __tablename__ = "advertiser_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=True)
    marketplace: Mapped[str] = mapped_column(String(32), nullable=True)
    account_type: Mapped[str] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "profile_id", name="uq_advertiser_account_profile"),
    )


class GoogleAdvertiserAccount(Base):
    """Google Ads customer the user can access."""
    __tablename__ = "google_advertiser_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    customer_id: Mapped[str] = mapped_column(String(32), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "customer_id", name="uq_google_account_customer"),
    )


# ══════════════════════════════════════════════════════════════════════
#  CAMPAIGN METRICS (append-only daily facts)
# ══════════════════════════════════════════════════════════════════════

class CampaignMetrics(Base):
    """Amazon daily metrics per campaign / ad group."""
    __tablename__ = "campaign_metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    profile_id: Mapped[str] = mapped_column(String(64), nullable=False)
    campaign_id: Mapped[str] = mapped_column(String(64), nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(512), nullable=True)
    ad_group_id: Mapped[str] = mapped_column(String(64), nullable=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False)  # YYYY-MM-DD
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    conversions: Mapped[int] = mapped_column(Integer, default=0)  # orders
    sales: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_campaign_metrics_user_date", "user_id", "date"),
        Index("ix_campaign_metrics_campaign", "campaign_id"),
    )


class GoogleCampaignMetrics(Base):
    """Google Ads daily metrics per campaign / ad group."""
    __tablename__ = "google_campaign_metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    customer_id: Mapped[str] = mapped_column(String(32), nullable=False)
    campaign_id: Mapped[str] = mapped_column(String(64), nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(512), nullable=True)
    ad_group_id: Mapped[str] = mapped_column(String(64), nullable=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    conversions: Mapped[float] = mapped_column(Float, default=0.0)
    conversion_value: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_google_metrics_user_date", "user_id", "date"),
        Index("ix_google_metrics_campaign", "campaign_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  CHAT
# ══════════════════════════════════════════════════════════════════════

class ChatConversation(Base):
    __tablename__ = "chat_conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = _user_fk()
    title: Mapped[str] = mapped_column(String(255), default="New Conversation")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="[ChatMessage.sequence, ChatMessage.created_at]",
    )

    __table_args__ = (
        Index("ix_chat_conversations_user_updated", "user_id", "updated_at"),
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chat_conversations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user | assistant | system
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    message_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    sequence: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    conversation: Mapped["ChatConversation"] = relationship(back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_chat_messages_conversation_seq"),
    )


# ══════════════════════════════════════════════════════════════════════
#  ONBOARDING
# ══════════════════════════════════════════════════════════════════════

class OnboardingProgress(Base):
    __tablename__ = "onboarding_progress"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    current_step: Mapped[int] = mapped_column(Integer, default=1)
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class BusinessCore(Base):
    """Wizard step 1."""
    __tablename__ = "business_core"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[str] = mapped_column(String(255), nullable=True)
    company_size: Mapped[str] = mapped_column(String(64), nullable=True)
    marketplaces: Mapped[list] = mapped_column(JSON, default=list)
    main_goals: Mapped[list] = mapped_column(JSON, default=list)
    monthly_ad_spend: Mapped[str] = mapped_column(String(64), nullable=True)
    website: Mapped[str] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class BrandIdentity(Base):
    """Wizard step 3."""
    __tablename__ = "brand_identity"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    brand_name: Mapped[str] = mapped_column(String(255), nullable=False)
    brand_description: Mapped[str] = mapped_column(Text, nullable=True)
    brand_voice: Mapped[list] = mapped_column(JSON, default=list)
    target_audience: Mapped[list] = mapped_column(JSON, default=list)
    brand_values: Mapped[list] = mapped_column(JSON, default=list)
    primary_color: Mapped[str] = mapped_column(String(32), nullable=True)
    secondary_color: Mapped[str] = mapped_column(String(32), nullable=True)
    logo_url: Mapped[str] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class ProductsServices(Base):
    """Wizard step 4."""
    __tablename__ = "products_services"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    product_types: Mapped[list] = mapped_column(JSON, default=list)
    competitive_advantage: Mapped[list] = mapped_column(JSON, default=list)
    target_markets: Mapped[list] = mapped_column(JSON, default=list)
    top_selling_products: Mapped[list] = mapped_column(JSON, default=list)
    pricing_strategy: Mapped[str] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class CreativeExamples(Base):
    """Wizard step 5."""
    __tablename__ = "creative_examples"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    ad_examples: Mapped[list] = mapped_column(JSON, default=list)
    creative_preferences: Mapped[list] = mapped_column(JSON, default=list)
    preferred_ad_formats: Mapped[list] = mapped_column(JSON, default=list)
    successful_campaigns: Mapped[list] = mapped_column(JSON, default=list)
    competitor_creative_urls: Mapped[list] = mapped_column(JSON, default=list)
    brand_guidelines: Mapped[dict] = mapped_column(JSON, nullable=True)
    brand_guidelines_url: Mapped[str] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class PerformanceContext(Base):
    """Wizard step 6."""
    __tablename__ = "performance_context"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    target_roas: Mapped[float] = mapped_column(Float, nullable=True)
    target_acos: Mapped[float] = mapped_column(Float, nullable=True)
    target_cpa: Mapped[float] = mapped_column(Float, nullable=True)
    monthly_ad_budget: Mapped[float] = mapped_column(Float, nullable=True)
    key_metrics: Mapped[list] = mapped_column(JSON, default=lambda: ["conversions"])
    current_performance: Mapped[str] = mapped_column(Text, nullable=True)
    performance_goals: Mapped[str] = mapped_column(Text, nullable=True)
    seasonal_trends: Mapped[str] = mapped_column(Text, nullable=True)
    benchmarks: Mapped[dict] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


# Everything "reset onboarding" clears, in delete order
ONBOARDING_MODELS = (
    BusinessCore,
    BrandIdentity,
    ProductsServices,
    CreativeExamples,
    PerformanceContext,
    OnboardingProgress,
)
