"""
Metrics Router — ingest daily campaign metric rows and summarize them per platform.
Rows are append-only; the query pipeline reads them through retrieval_service.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.auth import get_current_user
from adspirer.database import get_db
from adspirer.models import User, CampaignMetrics, GoogleCampaignMetrics, Platform
from adspirer.services.retrieval_service import derive_metrics, MAX_LOOKBACK_DAYS
from adspirer.utils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


class _MetricRow(BaseModel):
    campaign_id: str = Field(min_length=1, max_length=64)
    campaign_name: Optional[str] = Field(default=None, max_length=512)
    ad_group_id: Optional[str] = Field(default=None, max_length=64)
    date: date
    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0)


class AmazonMetricRow(_MetricRow):
    profile_id: str = Field(min_length=1, max_length=64)
    conversions: int = Field(default=0, ge=0)
    sales: float = Field(default=0.0, ge=0)


class GoogleMetricRow(_MetricRow):
    customer_id: str = Field(min_length=1, max_length=32)
    conversions: float = Field(default=0.0, ge=0)
    conversion_value: float = Field(default=0.0, ge=0)


class AmazonMetricsIn(BaseModel):
    rows: list[AmazonMetricRow] = Field(min_length=1)


class GoogleMetricsIn(BaseModel):
    rows: list[GoogleMetricRow] = Field(min_length=1)


def _row_values(row: BaseModel) -> dict:
    values = row.model_dump()
    values["date"] = row.date.isoformat()
    return values


@router.post("/amazon", status_code=201)
async def ingest_amazon_metrics(
    payload: AmazonMetricsIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    db.add_all([CampaignMetrics(user_id=user.id, **_row_values(r)) for r in payload.rows])
    await db.flush()
    logger.info(f"Stored {len(payload.rows)} Amazon metric rows for user {user.id}")
    return {"inserted": len(payload.rows)}


@router.post("/google", status_code=201)
async def ingest_google_metrics(
    payload: GoogleMetricsIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    db.add_all([GoogleCampaignMetrics(user_id=user.id, **_row_values(r)) for r in payload.rows])
    await db.flush()
    logger.info(f"Stored {len(payload.rows)} Google metric rows for user {user.id}")
    return {"inserted": len(payload.rows)}


@router.get("/summary")
async def metrics_summary(
    days: int = Query(default=30, ge=1, le=MAX_LOOKBACK_DAYS),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Per-platform totals over the last N days with CTR / CPC / ROAS / ACOS."""
    since = (utcnow().date() - timedelta(days=days)).isoformat()
    summary = {}
    for platform, model, sales_col in (
        (Platform.AMAZON.value, CampaignMetrics, CampaignMetrics.sales),
        (Platform.GOOGLE.value, GoogleCampaignMetrics, GoogleCampaignMetrics.conversion_value),
    ):
        r = await db.execute(
            select(
                func.coalesce(func.sum(model.impressions), 0),
                func.coalesce(func.sum(model.clicks), 0),
                func.coalesce(func.sum(model.cost), 0),
                func.coalesce(func.sum(model.conversions), 0),
                func.coalesce(func.sum(sales_col), 0),
                func.count(func.distinct(model.campaign_id)),
            ).where(model.user_id == user.id, model.date >= since)
        )
        impressions, clicks, cost, conversions, sales, campaigns = r.one()
        summary[platform] = {"campaigns": campaigns, **derive_metrics(impressions, clicks, cost, conversions, sales)}

    return {"days": days, "since": since, "platforms": summary}
