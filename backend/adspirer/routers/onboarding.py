"""
Onboarding Router — the six-step wizard: progress, per-step saves and reads, reset.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.auth import get_current_user
from adspirer.database import get_db
from adspirer.models import User, ONBOARDING_FINAL_STEP
from adspirer.services import onboarding_service as onboarding

logger = logging.getLogger(__name__)

router = APIRouter()

_HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


# ── Schemas ────────────────────────────────────────────────────────────

class ProgressUpdate(BaseModel):
    current_step: int = Field(ge=1, le=ONBOARDING_FINAL_STEP)
    is_complete: Optional[bool] = None


class BusinessCoreIn(BaseModel):
    business_name: str = Field(min_length=1, max_length=255)
    industry: Optional[str] = None
    company_size: Optional[str] = None
    marketplaces: list[str] = Field(default_factory=list)
    main_goals: list[str] = Field(default_factory=list)
    monthly_ad_spend: Optional[str] = None
    website: Optional[str] = None


class ConnectPlatformsIn(BaseModel):
    main_platforms: list[str] = Field(default_factory=list)
    secondary_platforms: list[str] = Field(default_factory=list)


class BrandIdentityIn(BaseModel):
    brand_name: str = Field(min_length=1, max_length=255)
    brand_description: Optional[str] = None
    brand_voice: list[str] = Field(default_factory=list)
    target_audience: list[str] = Field(default_factory=list)
    brand_values: list[str] = Field(default_factory=list)
    primary_color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)
    secondary_color: Optional[str] = Field(default=None, pattern=_HEX_COLOR)
    logo_url: Optional[str] = None


class ProductsServicesIn(BaseModel):
    product_types: list[str] = Field(default_factory=list)
    competitive_advantage: list[str] = Field(default_factory=list)
    target_markets: list[str] = Field(default_factory=list)
    top_selling_products: list[dict[str, Any]] = Field(default_factory=list)
    pricing_strategy: Optional[str] = None


class CreativeExamplesIn(BaseModel):
    ad_examples: list[dict[str, Any]] = Field(default_factory=list)
    creative_preferences: list[str] = Field(default_factory=list)
    preferred_ad_formats: list[str] = Field(default_factory=list)
    successful_campaigns: list[dict[str, Any]] = Field(default_factory=list)
    competitor_creative_urls: list[str] = Field(default_factory=list)
    brand_guidelines: Optional[dict[str, Any]] = None
    brand_guidelines_url: Optional[str] = None


class PerformanceContextIn(BaseModel):
    target_roas: Optional[float] = Field(default=None, ge=0)
    target_acos: Optional[float] = Field(default=None, ge=0, le=100)
    target_cpa: Optional[float] = Field(default=None, ge=0)
    monthly_ad_budget: Optional[float] = Field(default=None, ge=0)
    key_metrics: list[str] = Field(default_factory=lambda: ["conversions"])
    current_performance: Optional[str] = None
    performance_goals: Optional[str] = None
    seasonal_trends: Optional[str] = None
    benchmarks: Optional[dict[str, Any]] = None


# ── Progress ───────────────────────────────────────────────────────────

@router.get("/onboarding/progress")
async def get_progress(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current step plus per-step completion (creates the step-1 row on first read)."""
    return await onboarding.progress_summary(db, user.id)


@router.post("/onboarding/progress")
async def update_progress(
    payload: ProgressUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        progress = await onboarding.set_progress(db, user.id, payload.current_step, payload.is_complete)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "current_step": progress.current_step, "is_complete": progress.is_complete}


# ── Step saves ─────────────────────────────────────────────────────────

async def _save(db: AsyncSession, user: User, step: int, payload: BaseModel) -> dict:
    row = await onboarding.save_step(db, user.id, step, payload.model_dump())
    progress = await onboarding.get_or_create_progress(db, user.id)
    return {
        "success": True,
        "data": row,
        "current_step": progress.current_step,
        "is_complete": progress.is_complete,
    }


@router.post("/onboarding/business-core")
async def save_business_core(
    payload: BusinessCoreIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _save(db, user, 1, payload)


@router.post("/onboarding/connect-platforms")
async def save_connect_platforms(
    payload: ConnectPlatformsIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Connections themselves happen under /api/amazon and /api/google; this only advances the wizard."""
    progress = await onboarding.complete_platform_step(db, user.id)
    platforms = await onboarding.connected_platforms(db, user.id)
    return {
        "success": True,
        "connected": platforms,
        "current_step": progress.current_step,
        "is_complete": progress.is_complete,
    }


@router.post("/onboarding/brand-identity")
async def save_brand_identity(
    payload: BrandIdentityIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _save(db, user, 3, payload)


@router.post("/onboarding/products-services")
async def save_products_services(
    payload: ProductsServicesIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _save(db, user, 4, payload)


@router.post("/onboarding/creative-examples")
async def save_creative_examples(
    payload: CreativeExamplesIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _save(db, user, 5, payload)


@router.post("/onboarding/performance-context")
async def save_performance_context(
    payload: PerformanceContextIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Last step: saving it completes onboarding."""
    return await _save(db, user, 6, payload)


# ── Reads ──────────────────────────────────────────────────────────────

async def _read(db: AsyncSession, user: User, step: int) -> Optional[dict]:
    row = await onboarding.get_step_row(db, onboarding.STEP_MODELS[step], user.id)
    return onboarding.serialize_row(row) if row is not None else None


@router.get("/user/business-core")
async def get_business_core(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await _read(db, user, 1)


@router.get("/user/brand-identity")
async def get_brand_identity(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await _read(db, user, 3)


@router.get("/user/products-services")
async def get_products_services(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await _read(db, user, 4)


@router.get("/user/creative-examples")
async def get_creative_examples(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await _read(db, user, 5)


@router.get("/user/performance-context")
async def get_performance_context(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await _read(db, user, 6)


@router.get("/user/connected-platforms")
async def get_connected_platforms(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await onboarding.connected_platforms(db, user.id)


@router.post("/user/reset-onboarding")
async def reset_onboarding(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Clear wizard answers and progress; accounts, tokens and keys are kept."""
    deleted = await onboarding.reset_onboarding(db, user.id)
    return {"success": True, "deleted": deleted}
