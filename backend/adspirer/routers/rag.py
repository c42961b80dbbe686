"""
Campaign Query Router — natural-language questions answered from the user's campaign metrics.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.auth import get_current_user
from adspirer.database import get_db
from adspirer.models import User
from adspirer.routers.chat import get_ai_service
from adspirer.services.ai_service import AIService, AI_PROVIDER_ERRORS
from adspirer.services.chat_service import get_conversation
from adspirer.services.rag_service import answer_query, stream_answer
from adspirer.utils import parse_uuid, safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter()


class QueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=4000)
    conversation_id: Optional[str] = None
    include_debug: bool = False


def _question(payload: QueryRequest) -> str:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query must not be empty")
    return query


async def _resolve_conversation(db: AsyncSession, user: User, conversation_id: Optional[str]):
    if not conversation_id:
        return None
    conversation = await get_conversation(db, user.id, parse_uuid(conversation_id, "conversation_id"))
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post("/query-two-llm")
async def query_stream(
    payload: QueryRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ai: AIService = Depends(get_ai_service),
):
    """Stream the answer as SSE; the stored assistant message id is sent before [DONE]."""
    query = _question(payload)
    conversation = await _resolve_conversation(db, user, payload.conversation_id)
    return StreamingResponse(
        stream_answer(ai, user.id, query, conversation.id if conversation else None),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/query-two-llm/sync")
async def query_sync(
    payload: QueryRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ai: AIService = Depends(get_ai_service),
):
    """Same pipeline, one JSON response with the answer, campaigns and insights."""
    query = _question(payload)
    conversation = await _resolve_conversation(db, user, payload.conversation_id)
    try:
        return await answer_query(
            db, ai, user.id, query,
            conversation=conversation,
            include_debug=payload.include_debug,
        )
    except AI_PROVIDER_ERRORS as e:
        raise HTTPException(
            status_code=502,
            detail=safe_error_detail(e, "Failed to answer the question. Please try again."),
        )
