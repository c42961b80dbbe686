"""
Tests for the campaign-data question endpoints (sync and streaming).
"""

import uuid
from datetime import timedelta

import httpx
import openai
import pytest

from adspirer.models import CampaignMetrics
from adspirer.services.rag_service import EMPTY_ANSWER_MESSAGE
from adspirer.services.retrieval_service import NO_DATA_ANSWER
from adspirer.utils import utcnow
from conftest import parse_sse

pytestmark = pytest.mark.anyio


async def _seed_metrics(session, user_id):
    today = utcnow()
    session.add_all([
        CampaignMetrics(
            user_id=uuid.UUID(user_id), profile_id="p1", campaign_id="a1", campaign_name="Summer Sale",
            date=(today - timedelta(days=d)).strftime("%Y-%m-%d"),
            impressions=1000, clicks=40, cost=20.0, conversions=4, sales=80.0,
        )
        for d in (1, 2)
    ])
    await session.commit()


async def _conversation(client, headers):
    response = await client.post(
        "/api/chat/conversations", json={"generate_welcome": False}, headers=headers,
    )
    return response.json()["id"]


async def test_sync_query_answers_from_campaign_data(client, user, session, fake_ai):
    await _seed_metrics(session, user["id"])
    fake_ai.filters = {"platforms": ["amazon"], "days": 7}

    response = await client.post(
        "/api/rag/query-two-llm/sync",
        json={"query": "What was the ROAS of my Amazon campaigns last 7 days?", "include_debug": True},
        headers=user["headers"],
    )
    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == fake_ai.answer
    assert data["retrieval_success"] is True
    [campaign] = data["campaigns"]
    assert campaign["campaign_id"] == "a1"
    assert campaign["metrics"]["roas"] == 4.0
    assert data["insights"]["cost"]["total"] == 40.0
    assert data["conversation_id"] is None
    assert data["message_id"] is None
    assert data["debug_info"]["filters"]["days"] == 7

    # The answering prompt carried the retrieved rows
    assert "Summer Sale" in fake_ai.contexts[-1]


async def test_sync_query_persists_answer_to_conversation(client, user, fake_ai):
    conversation_id = await _conversation(client, user["headers"])
    response = await client.post(
        "/api/rag/query-two-llm/sync",
        json={"query": "How are my campaigns doing?", "conversation_id": conversation_id},
        headers=user["headers"],
    )
    assert response.status_code == 200
    data = response.json()
    assert data["retrieval_success"] is False
    assert "No relevant campaign data found." in fake_ai.contexts[-1]

    messages = (await client.get(
        f"/api/chat/conversations/{conversation_id}/messages", headers=user["headers"],
    )).json()
    [answer] = messages
    assert answer["id"] == data["message_id"]
    assert answer["role"] == "assistant"
    assert answer["metadata"]["retrieval_success"] is False
    assert answer["metadata"]["campaign_ids"] == []


async def test_sync_query_empty_answer_uses_no_data_message(client, auth_headers, fake_ai):
    fake_ai.answer = "   "
    response = await client.post(
        "/api/rag/query-two-llm/sync", json={"query": "anything?"}, headers=auth_headers,
    )
    assert response.json()["answer"] == NO_DATA_ANSWER


async def test_sync_query_empty_answer_with_data_does_not_claim_missing_data(client, user, session, fake_ai):
    await _seed_metrics(session, user["id"])
    fake_ai.answer = ""
    response = await client.post(
        "/api/rag/query-two-llm/sync", json={"query": "What was my ROAS this week?"}, headers=user["headers"],
    )
    assert response.json()["retrieval_success"] is True
    assert response.json()["answer"] == EMPTY_ANSWER_MESSAGE


async def test_stream_query_empty_answer_with_data(client, user, session, fake_ai):
    await _seed_metrics(session, user["id"])
    fake_ai.answer = "   "
    response = await client.post(
        "/api/rag/query-two-llm", json={"query": "What was my ROAS this week?"}, headers=user["headers"],
    )
    events = parse_sse(response.text)
    assert events[-1] == "[DONE]"
    assert {"content": EMPTY_ANSWER_MESSAGE} in events


@pytest.mark.parametrize("path", ["/api/rag/query-two-llm", "/api/rag/query-two-llm/sync"])
async def test_blank_query_is_400(client, auth_headers, fake_ai, path):
    response = await client.post(path, json={"query": "   \n\t"}, headers=auth_headers)
    assert response.status_code == 400
    assert fake_ai.contexts == []


async def test_sync_query_provider_error_is_502(client, auth_headers, fake_ai):
    fake_ai.error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))
    response = await client.post(
        "/api/rag/query-two-llm/sync", json={"query": "best campaign?"}, headers=auth_headers,
    )
    assert response.status_code == 502
    assert "api.openai.com" not in response.json()["detail"]


async def test_unknown_conversation_is_404(client, auth_headers):
    response = await client.post(
        "/api/rag/query-two-llm/sync",
        json={"query": "best campaign?", "conversation_id": str(uuid.uuid4())},
        headers=auth_headers,
    )
    assert response.status_code == 404


async def test_stream_query_sends_saved_message_id_before_done(client, user, session, fake_ai):
    await _seed_metrics(session, user["id"])
    conversation_id = await _conversation(client, user["headers"])

    response = await client.post(
        "/api/rag/query-two-llm",
        json={"query": "Compare my campaigns", "conversation_id": conversation_id},
        headers=user["headers"],
    )
    assert response.status_code == 200
    events = parse_sse(response.text)
    assert events[-1] == "[DONE]"
    assert "savedMessageId" in events[-2]
    streamed = "".join(e["content"] for e in events if isinstance(e, dict) and "content" in e)
    assert streamed.strip() == fake_ai.answer

    [answer] = (await client.get(
        f"/api/chat/conversations/{conversation_id}/messages", headers=user["headers"],
    )).json()
    assert answer["id"] == events[-2]["savedMessageId"]
    assert answer["metadata"]["campaign_ids"] == ["a1"]


async def test_stream_query_without_conversation_just_answers(client, auth_headers):
    response = await client.post(
        "/api/rag/query-two-llm", json={"query": "best campaign?"}, headers=auth_headers,
    )
    events = parse_sse(response.text)
    assert events[-1] == "[DONE]"
    assert not any(isinstance(e, dict) and "savedMessageId" in e for e in events)


async def test_stream_query_failure_persists_nothing(client, auth_headers, fake_ai):
    conversation_id = await _conversation(client, auth_headers)
    fake_ai.error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))

    response = await client.post(
        "/api/rag/query-two-llm",
        json={"query": "best campaign?", "conversation_id": conversation_id},
        headers=auth_headers,
    )
    events = parse_sse(response.text)
    assert events[-1] == "[ERROR]"
    assert "error" in events[-2]

    messages = (await client.get(
        f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers,
    )).json()
    assert messages == []
