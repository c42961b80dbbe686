"""
Tests for question parsing, metric lookup and context assembly.
"""

import uuid
from datetime import timedelta

import pytest

from adspirer.models import User, CampaignMetrics, GoogleCampaignMetrics
from adspirer.services.retrieval_service import (
    DEFAULT_LOOKBACK_DAYS,
    MAX_CAMPAIGNS,
    MAX_LOOKBACK_DAYS,
    assemble_context,
    derive_metrics,
    extract_campaign_insights,
    extract_query_parameters,
    fetch_relevant_metrics,
    merge_filters,
)
from adspirer.utils import utcnow


def _days_ago(n: int) -> str:
    return (utcnow() - timedelta(days=n)).strftime("%Y-%m-%d")


# ── Parameter extraction ───────────────────────────────────────────────

def test_extract_query_parameters():
    params = extract_query_parameters(
        'Compare ROAS and clicks for campaign called "Summer Sale" on Amazon in the last 2 weeks'
    )
    assert params["metrics"] == ["clicks", "roas"]
    assert params["timeframe"] == {"value": 2, "unit": "week"}
    assert params["platforms"] == ["amazon"]
    assert params["comparison"] is True
    assert params["specific_campaign"] == "Summer Sale"


def test_extract_query_parameters_plain_question():
    params = extract_query_parameters("How are my ads doing?")
    assert params == {
        "metrics": [],
        "timeframe": None,
        "platforms": [],
        "comparison": False,
        "specific_campaign": None,
    }


def test_merge_filters_prefers_well_typed_model_values():
    params = extract_query_parameters("amazon sales last 7 days")
    filters = merge_filters(params, {
        "platforms": ["Google"],
        "days": 14,
        "campaign_ids": [123],
        "campaign_name": "  brand  ",
        "metrics": ["roas"],
    })
    assert filters == {
        "platforms": ["google"],
        "days": 14,
        "campaign_ids": ["123"],
        "campaign_name": "brand",
        "metrics": ["roas"],
    }


def test_merge_filters_falls_back_to_heuristics():
    params = extract_query_parameters("amazon sales last 2 months")
    filters = merge_filters(params, {"platforms": "amazon", "days": "sixty", "campaign_ids": None})
    assert filters["platforms"] == ["amazon"]
    assert filters["days"] == 60
    assert filters["campaign_ids"] == []
    assert filters["metrics"] == ["sales"]


def test_merge_filters_caps_lookback():
    filters = merge_filters(extract_query_parameters("last 5 years"), {})
    assert filters["days"] == MAX_LOOKBACK_DAYS
    assert merge_filters(extract_query_parameters("anything"), {})["days"] == DEFAULT_LOOKBACK_DAYS


# ── Derived metrics and insights ───────────────────────────────────────

def test_derive_metrics():
    metrics = derive_metrics(impressions=1000, clicks=50, cost=25.0, conversions=5, sales=100.0)
    assert metrics["ctr"] == 5.0
    assert metrics["cpc"] == 0.5
    assert metrics["conversion_rate"] == 10.0
    assert metrics["roas"] == 4.0
    assert metrics["acos"] == 25.0


def test_derive_metrics_zero_denominators():
    metrics = derive_metrics(0, 0, 0, 0, 0)
    assert metrics["ctr"] is None
    assert metrics["cpc"] is None
    assert metrics["roas"] is None
    assert metrics["acos"] is None


def test_extract_campaign_insights():
    campaigns = [
        {"metrics": {"cost": 10.0, "roas": 2.0, "acos": None}},
        {"metrics": {"cost": 30.0, "roas": 4.0, "acos": 25.0}},
    ]
    insights = extract_campaign_insights(campaigns)
    assert insights["cost"] == {"average": 20.0, "maximum": 30.0, "minimum": 10.0, "total": 40.0}
    assert insights["roas"]["average"] == 3.0
    assert insights["acos"]["total"] == 25.0
    assert extract_campaign_insights([]) == {}


def test_assemble_context_with_and_without_data():
    params = extract_query_parameters("best roas last 30 days")
    campaign = {
        "platform": "amazon",
        "account_id": "111",
        "campaign_id": "c-1",
        "name": "Summer Sale",
        "date_range": "2025-01-01 to 2025-01-30",
        "metrics": derive_metrics(1000, 50, 25.0, 5, 100.0),
    }
    context = assemble_context("best roas?", [campaign], params, extract_campaign_insights([campaign]))
    assert "Relevant Campaign Data:" in context
    assert "Summer Sale (amazon)" in context
    assert "Roas: 4.00" in context
    assert "Campaign Insights:" in context

    empty = assemble_context("best roas?", [], params, {})
    assert "No relevant campaign data found." in empty
    assert "Use ONLY the campaign data" not in empty


# ── Lookup ─────────────────────────────────────────────────────────────

async def _make_user(session, email):
    user = User(email=email, password_hash="x", name="T")
    session.add(user)
    await session.flush()
    return user


@pytest.mark.anyio
async def test_fetch_relevant_metrics_aggregates_and_scopes(session):
    owner = await _make_user(session, "owner@example.com")
    other = await _make_user(session, "other@example.com")
    session.add_all([
        CampaignMetrics(user_id=owner.id, profile_id="p1", campaign_id="a1", campaign_name="Summer Sale",
                        date=_days_ago(1), impressions=100, clicks=10, cost=5.0, conversions=1, sales=20.0),
        CampaignMetrics(user_id=owner.id, profile_id="p1", campaign_id="a1", campaign_name="Summer Sale",
                        date=_days_ago(2), impressions=100, clicks=10, cost=5.0, conversions=1, sales=20.0),
        CampaignMetrics(user_id=owner.id, profile_id="p1", campaign_id="a2", campaign_name="Old Promo",
                        date=_days_ago(90), impressions=1, clicks=1, cost=99.0, conversions=0, sales=0.0),
        GoogleCampaignMetrics(user_id=owner.id, customer_id="g1", campaign_id="b1", campaign_name="Brand Search",
                              date=_days_ago(3), impressions=500, clicks=25, cost=50.0, conversions=2.5,
                              conversion_value=150.0),
        CampaignMetrics(user_id=other.id, profile_id="p9", campaign_id="x1", campaign_name="Not Mine",
                        date=_days_ago(1), impressions=1, clicks=1, cost=500.0, conversions=0, sales=0.0),
    ])
    await session.commit()

    campaigns = await fetch_relevant_metrics(session, owner.id, {"days": 30})
    assert [c["campaign_id"] for c in campaigns] == ["b1", "a1"]

    google, amazon = campaigns
    assert google["platform"] == "google"
    assert google["metrics"]["sales"] == 150.0
    assert amazon["account_id"] == "p1"
    assert amazon["metrics"]["impressions"] == 200
    assert amazon["metrics"]["cost"] == 10.0
    assert amazon["metrics"]["roas"] == 4.0
    assert amazon["date_range"] == f"{_days_ago(2)} to {_days_ago(1)}"

    only_amazon = await fetch_relevant_metrics(session, owner.id, {"days": 365, "platforms": ["amazon"]})
    assert {c["campaign_id"] for c in only_amazon} == {"a1", "a2"}

    by_name = await fetch_relevant_metrics(session, owner.id, {"days": 30, "campaign_name": "summer"})
    assert [c["campaign_id"] for c in by_name] == ["a1"]

    nobody = await fetch_relevant_metrics(session, uuid.uuid4(), {"days": 30})
    assert nobody == []


@pytest.mark.anyio
async def test_fetch_relevant_metrics_keeps_top_campaigns_by_cost(session):
    owner = await _make_user(session, "owner@example.com")
    session.add_all([
        CampaignMetrics(user_id=owner.id, profile_id="p1", campaign_id=f"c{i}", campaign_name=f"C{i}",
                        date=_days_ago(1), impressions=10, clicks=1, cost=float(i), conversions=0, sales=0.0)
        for i in range(MAX_CAMPAIGNS + 3)
    ])
    await session.commit()

    campaigns = await fetch_relevant_metrics(session, owner.id, {})
    assert len(campaigns) == MAX_CAMPAIGNS
    assert campaigns[0]["campaign_id"] == f"c{MAX_CAMPAIGNS + 2}"
