"""
Retrieval Service — question parsing, campaign-metric lookup and prompt context assembly
for the campaign-data query pipeline.
"""

import logging
import re
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.models import CampaignMetrics, GoogleCampaignMetrics, Platform
from adspirer.utils import utcnow, truncate

logger = logging.getLogger(__name__)

METRIC_TERMS = (
    "impressions", "clicks", "ctr", "click-through rate",
    "cost", "spend", "sales", "revenue", "roas", "roi",
    "conversions", "conversion rate", "cpa", "cost per acquisition", "acos",
)
PLATFORM_TERMS = ("amazon", "google", "meta", "facebook")

_TIMEFRAME_RE = re.compile(r"last\s+(\d+)\s+(day|week|month|year)s?", re.IGNORECASE)
_COMPARISON_RE = re.compile(r"compar(?:e|ison)|\bvs\.?|versus|better than|worse than|difference", re.IGNORECASE)
_CAMPAIGN_NAME_RE = re.compile(
    r"campaign\s+(?:(?:called|named)\s+[\"']?([^\"'?.,!]+)[\"']?|[\"']([^\"']+)[\"'])",
    re.IGNORECASE,
)

UNIT_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365}
DEFAULT_LOOKBACK_DAYS = 30
MAX_LOOKBACK_DAYS = 365
MAX_CAMPAIGNS = 10

NO_DATA_ANSWER = (
    "I couldn't find campaign data relevant to your question. "
    "Could you provide more details about which campaigns you're interested in?"
)


# ── Query parameters ───────────────────────────────────────────────────

def extract_query_parameters(query: str) -> dict:
    """Heuristic read of metrics, timeframe, platforms, comparison and campaign name."""
    lowered = query.lower()
    params = {
        "metrics": [m for m in METRIC_TERMS if m in lowered],
        "timeframe": None,
        "platforms": [p for p in PLATFORM_TERMS if p in lowered],
        "comparison": bool(_COMPARISON_RE.search(query)),
        "specific_campaign": None,
    }

    time_match = _TIMEFRAME_RE.search(query)
    if time_match:
        params["timeframe"] = {"value": int(time_match.group(1)), "unit": time_match.group(2).lower()}

    name_match = _CAMPAIGN_NAME_RE.search(query)
    if name_match:
        params["specific_campaign"] = (name_match.group(1) or name_match.group(2)).strip()

    return params


def timeframe_to_days(timeframe: Optional[dict]) -> Optional[int]:
    if not timeframe:
        return None
    return timeframe["value"] * UNIT_DAYS.get(timeframe["unit"], 1)


def merge_filters(params: dict, llm_filters: dict) -> dict:
    """
    Combine heuristic parameters with the model's filters. Model values win when
    present and well-typed; anything else falls back to the heuristics.
    """
    platforms = [p for p in params.get("platforms", []) if p in (Platform.AMAZON.value, Platform.GOOGLE.value)]
    llm_platforms = llm_filters.get("platforms")
    if isinstance(llm_platforms, list):
        llm_platforms = [str(p).lower() for p in llm_platforms]
        valid = [p for p in llm_platforms if p in (Platform.AMAZON.value, Platform.GOOGLE.value)]
        if valid:
            platforms = valid

    days = timeframe_to_days(params.get("timeframe"))
    llm_days = llm_filters.get("days")
    if isinstance(llm_days, int) and not isinstance(llm_days, bool) and llm_days > 0:
        days = llm_days
    days = min(days or DEFAULT_LOOKBACK_DAYS, MAX_LOOKBACK_DAYS)

    campaign_ids = llm_filters.get("campaign_ids")
    if not isinstance(campaign_ids, list):
        campaign_ids = []

    campaign_name = llm_filters.get("campaign_name")
    if not isinstance(campaign_name, str) or not campaign_name.strip():
        campaign_name = params.get("specific_campaign")

    metrics = llm_filters.get("metrics")
    if not isinstance(metrics, list) or not metrics:
        metrics = params.get("metrics", [])

    return {
        "platforms": platforms,
        "days": days,
        "campaign_ids": [str(c) for c in campaign_ids],
        "campaign_name": campaign_name.strip() if campaign_name else None,
        "metrics": [str(m) for m in metrics],
    }


# ── Metric lookup ──────────────────────────────────────────────────────

def _ratio(numerator: float, denominator: float, scale: float = 1.0) -> Optional[float]:
    if not denominator:
        return None
    return round(numerator / denominator * scale, 4)


def derive_metrics(impressions: int, clicks: int, cost: float, conversions: float, sales: float) -> dict:
    """Totals plus CTR, CPC, conversion rate, ROAS and ACOS. Rates are percentages."""
    return {
        "impressions": int(impressions or 0),
        "clicks": int(clicks or 0),
        "cost": round(float(cost or 0), 2),
        "conversions": float(conversions or 0),
        "sales": round(float(sales or 0), 2),
        "ctr": _ratio(clicks, impressions, 100),
        "cpc": _ratio(cost, clicks),
        "conversion_rate": _ratio(conversions, clicks, 100),
        "roas": _ratio(sales, cost),
        "acos": _ratio(cost, sales, 100),
    }


async def _aggregate(
    db: AsyncSession,
    model,
    account_col,
    sales_col,
    platform: str,
    user_id: uuid.UUID,
    since: str,
    filters: dict,
) -> list[dict]:
    stmt = (
        select(
            account_col.label("account_id"),
            model.campaign_id,
            func.max(model.campaign_name).label("campaign_name"),
            func.sum(model.impressions).label("impressions"),
            func.sum(model.clicks).label("clicks"),
            func.sum(model.cost).label("cost"),
            func.sum(model.conversions).label("conversions"),
            func.sum(sales_col).label("sales"),
            func.min(model.date).label("first_date"),
            func.max(model.date).label("last_date"),
        )
        .where(model.user_id == user_id, model.date >= since)
        .group_by(account_col, model.campaign_id)
    )
    if filters.get("campaign_ids"):
        stmt = stmt.where(model.campaign_id.in_(filters["campaign_ids"]))
    if filters.get("campaign_name"):
        stmt = stmt.where(func.lower(model.campaign_name).contains(filters["campaign_name"].lower()))

    rows = (await db.execute(stmt)).all()
    return [
        {
            "platform": platform,
            "account_id": row.account_id,
            "campaign_id": row.campaign_id,
            "name": row.campaign_name or row.campaign_id,
            "date_range": f"{row.first_date} to {row.last_date}",
            "metrics": derive_metrics(row.impressions, row.clicks, row.cost, row.conversions, row.sales),
        }
        for row in rows
    ]


async def fetch_relevant_metrics(db: AsyncSession, user_id: uuid.UUID, filters: dict) -> list[dict]:
    """
    Per-campaign aggregates for the user inside the look-back window,
    top MAX_CAMPAIGNS by cost. Always scoped to user_id.
    """
    days = filters.get("days") or DEFAULT_LOOKBACK_DAYS
    since = (utcnow() - timedelta(days=days)).strftime("%Y-%m-%d")
    platforms = filters.get("platforms") or [Platform.AMAZON.value, Platform.GOOGLE.value]

    campaigns: list[dict] = []
    if Platform.AMAZON.value in platforms:
        campaigns += await _aggregate(
            db, CampaignMetrics, CampaignMetrics.profile_id, CampaignMetrics.sales,
            Platform.AMAZON.value, user_id, since, filters,
        )
    if Platform.GOOGLE.value in platforms:
        campaigns += await _aggregate(
            db, GoogleCampaignMetrics, GoogleCampaignMetrics.customer_id, GoogleCampaignMetrics.conversion_value,
            Platform.GOOGLE.value, user_id, since, filters,
        )

    campaigns.sort(key=lambda c: c["metrics"]["cost"], reverse=True)
    logger.info(f"Retrieved {len(campaigns)} campaigns for user {user_id} (last {days} days)")
    return campaigns[:MAX_CAMPAIGNS]


def extract_campaign_insights(campaigns: list[dict]) -> dict:
    """Average / maximum / minimum / total of every numeric metric across campaigns."""
    values: dict[str, list[float]] = {}
    for campaign in campaigns:
        for key, value in (campaign.get("metrics") or {}).items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values.setdefault(key, []).append(value)

    insights = {}
    for key, series in values.items():
        total = sum(series)
        insights[key] = {
            "average": round(total / len(series), 4),
            "maximum": max(series),
            "minimum": min(series),
            "total": round(total, 4),
        }
    return insights


# ── Context formatting ─────────────────────────────────────────────────

def _readable(key: str) -> str:
    return " ".join(word.capitalize() for word in key.split("_"))


def _format_value(key: str, value) -> str:
    if not isinstance(value, (int, float)):
        return str(value)
    if key in ("cost", "sales", "cpc") or "value" in key:
        return f"${value:,.2f}"
    if key == "roas":
        return f"{value:.2f}"
    if key in ("ctr", "acos") or "rate" in key:
        return f"{value:.2f}%"
    return f"{value:,.0f}" if float(value).is_integer() else f"{value:,.2f}"


def format_campaign_data(campaigns: list[dict]) -> str:
    lines = []
    for index, campaign in enumerate(campaigns, start=1):
        lines.append(f"Campaign {index}: {campaign['name']} ({campaign['platform']})")
        lines.append(f"  ID: {campaign['campaign_id']}")
        lines.append(f"  Account: {campaign['account_id']}")
        if campaign.get("date_range"):
            lines.append(f"  Dates: {campaign['date_range']}")
        lines.append("  Metrics:")
        for key, value in campaign["metrics"].items():
            if value is None:
                continue
            lines.append(f"    {_readable(key)}: {_format_value(key, value)}")
        lines.append("")
    return "\n".join(lines) + "\n"


def format_insights(insights: dict) -> str:
    if not insights:
        return ""
    lines = ["Campaign Insights:"]
    for key, stats in insights.items():
        parts = ", ".join(f"{stat}: {_format_value(key, value)}" for stat, value in stats.items())
        lines.append(f"  {_readable(key)}: {parts}")
    return "\n".join(lines) + "\n"


def assemble_context(query: str, campaigns: list[dict], params: dict, insights: dict) -> str:
    """Prompt body for the answering call: analysis, data, insights, instructions."""
    parts = [f'User Query: "{query}"', "", "Query Analysis:"]
    if params.get("metrics"):
        parts.append(f"  Metrics of interest: {', '.join(params['metrics'])}")
    if params.get("platforms"):
        parts.append(f"  Platforms mentioned: {', '.join(params['platforms'])}")
    if params.get("timeframe"):
        tf = params["timeframe"]
        parts.append(f"  Time period: Last {tf['value']} {tf['unit']}(s)")
    if params.get("comparison"):
        parts.append("  User is asking for a comparison")
    if params.get("specific_campaign"):
        parts.append(f"  Specific campaign mentioned: {params['specific_campaign']}")
    parts.append("")

    if campaigns:
        parts.append("Relevant Campaign Data:")
        parts.append(format_campaign_data(campaigns))
        parts.append(format_insights(insights))
        parts.append("Instructions for answering:")
        parts.append("1. Use ONLY the campaign data provided above to answer the user's question.")
        parts.append("2. If the data doesn't contain information needed to answer fully, acknowledge the limitation.")
        parts.append("3. Provide concise, factual answers based on the campaign metrics.")
        parts.append("4. If there are multiple campaigns, compare them when relevant to the query.")
    else:
        parts.append("No relevant campaign data found.")
        parts.append("")
        parts.append("Instructions for answering:")
        parts.append("1. Tell the user that no matching campaign data was found in their connected accounts.")
        parts.append("2. Answer from general advertising knowledge only if that is still helpful, and say so.")
        parts.append("3. Suggest which campaigns, platforms or dates they could ask about instead.")

    context = "\n".join(parts)
    logger.info(f"Assembled context ({len(context)} chars) for query: '{truncate(query, 50)}'")
    return context
