"""
Campaign-data query pipeline ("two-LLM" retrieval).

1. Heuristic parameter extraction from the question.
2. First LLM call turns the question into lookup filters (never raw SQL).
3. ORM lookup of the user's campaign metrics with those filters.
4. Second LLM call phrases the answer from the assembled context.
5. The answer is stored as an assistant message when a conversation is given.

LLM errors propagate; there is no retry on this path.
"""

import logging
import uuid
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.database import async_session
from adspirer.models import ChatConversation, MessageRole
from adspirer.services.ai_service import AIService
from adspirer.services.chat_service import (
    add_message, get_conversation, sse_event, SSE_DONE, SSE_ERROR,
)
from adspirer.services.retrieval_service import (
    extract_query_parameters,
    merge_filters,
    fetch_relevant_metrics,
    extract_campaign_insights,
    assemble_context,
    NO_DATA_ANSWER,
)
from adspirer.utils import utcnow, truncate

logger = logging.getLogger(__name__)

STREAM_ERROR_MESSAGE = "I couldn't answer that right now. Please try again in a moment."
EMPTY_ANSWER_MESSAGE = (
    "I found campaign data for your question but couldn't put an answer together. "
    "Please try rephrasing it."
)


async def prepare_context(db: AsyncSession, ai: AIService, user_id: uuid.UUID, query: str) -> dict:
    """Steps 1-3: parameters, filters, campaigns, insights and the prompt context."""
    params = extract_query_parameters(query)
    llm_filters = await ai.understand_query(query, params)
    filters = merge_filters(params, llm_filters)
    campaigns = await fetch_relevant_metrics(db, user_id, filters)
    insights = extract_campaign_insights(campaigns)
    return {
        "params": params,
        "filters": filters,
        "campaigns": campaigns,
        "insights": insights,
        "context": assemble_context(query, campaigns, params, insights),
    }


def _fallback_answer(campaigns: list[dict]) -> str:
    """Stand-in for an empty model reply; only claims missing data when none was retrieved."""
    return EMPTY_ANSWER_MESSAGE if campaigns else NO_DATA_ANSWER


def _answer_metadata(ai: AIService, campaigns: list[dict]) -> dict:
    return {
        "model": ai.model_id,
        "source": "campaign_query",
        "timestamp": utcnow().isoformat(),
        "campaign_ids": [c["campaign_id"] for c in campaigns],
        "retrieval_success": bool(campaigns),
    }


async def answer_query(
    db: AsyncSession,
    ai: AIService,
    user_id: uuid.UUID,
    query: str,
    conversation: Optional[ChatConversation] = None,
    include_debug: bool = False,
) -> dict:
    """Non-streaming variant. Returns the answer with the data it was based on."""
    logger.info(f"Campaign query from user {user_id}: '{truncate(query)}'")
    prepared = await prepare_context(db, ai, user_id, query)
    campaigns = prepared["campaigns"]

    answer = (await ai.answer_with_context(prepared["context"])).strip()
    if not answer:
        answer = _fallback_answer(campaigns)

    message_id = None
    if conversation is not None:
        message = await add_message(
            db, conversation, MessageRole.ASSISTANT.value, answer, _answer_metadata(ai, campaigns),
        )
        message_id = str(message.id)

    result = {
        "answer": answer,
        "campaigns": campaigns,
        "insights": prepared["insights"],
        "retrieval_success": bool(campaigns),
        "conversation_id": str(conversation.id) if conversation is not None else None,
        "message_id": message_id,
    }
    if include_debug:
        result["debug_info"] = {
            "extracted_params": prepared["params"],
            "filters": prepared["filters"],
            "context_length": len(prepared["context"]),
        }
    return result


async def stream_answer(
    ai: AIService,
    user_id: uuid.UUID,
    query: str,
    conversation_id: Optional[uuid.UUID] = None,
) -> AsyncIterator[str]:
    """
    Streaming variant as SSE lines: content chunks, then savedMessageId once the
    assistant message is committed, then [DONE]. On failure: an error event and
    [ERROR], with nothing persisted.
    """
    logger.info(f"Streaming campaign query from user {user_id}: '{truncate(query)}'")
    # The request-scoped session is closed before the body streams
    async with async_session() as db:
        try:
            prepared = await prepare_context(db, ai, user_id, query)
            chunks = []
            async for delta in ai.stream_answer_with_context(prepared["context"]):
                chunks.append(delta)
                yield sse_event({"content": delta})

            answer = "".join(chunks).strip()
            if not answer:
                answer = _fallback_answer(prepared["campaigns"])
                yield sse_event({"content": answer})

            if conversation_id is not None:
                conversation = await get_conversation(db, user_id, conversation_id)
                if conversation is None:
                    raise LookupError(f"Conversation {conversation_id} disappeared during streaming")
                message = await add_message(
                    db, conversation, MessageRole.ASSISTANT.value, answer,
                    _answer_metadata(ai, prepared["campaigns"]),
                )
                await db.commit()
                yield sse_event({"savedMessageId": str(message.id)})
        except Exception as e:
            await db.rollback()
            logger.error(f"Campaign query stream failed for user {user_id}: {e}", exc_info=True)
            yield sse_event({"error": STREAM_ERROR_MESSAGE})
            yield SSE_ERROR
            return

    yield SSE_DONE
