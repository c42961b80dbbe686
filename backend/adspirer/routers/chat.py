"""
Chat Router — conversations, messages and assistant completions (streaming or not).
"""

import logging
import uuid
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from adspirer.auth import get_current_user
from adspirer.database import get_db, async_session
from adspirer.models import User, BusinessCore, ChatConversation, MessageRole
from adspirer.services.ai_service import (
    AIService, AI_PROVIDER_ERRORS, create_ai_service, FALLBACK_WELCOME_MESSAGE,
)
from adspirer.services.chat_service import (
    DEFAULT_TITLE,
    SSE_DONE,
    SSE_ERROR,
    add_message,
    delete_conversation,
    get_conversation,
    history_for_llm,
    list_conversations,
    list_messages,
    serialize_conversation,
    serialize_message,
    sse_event,
)
from adspirer.services.intent_service import detect_campaign_creation_intent
from adspirer.services.onboarding_service import get_step_row
from adspirer.utils import parse_uuid, safe_error_detail, truncate, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_ERROR_MESSAGE = "The assistant could not respond. Please try again."


# ── AI dependency ─────────────────────────────────────────────────────

def get_optional_ai_service() -> Optional[AIService]:
    """The configured AI service, or None when no provider key is set."""
    try:
        return create_ai_service()
    except ValueError as e:
        logger.warning(f"AI service unavailable: {e}")
        return None


def get_ai_service(ai: Optional[AIService] = Depends(get_optional_ai_service)) -> AIService:
    if ai is None:
        raise HTTPException(
            status_code=503,
            detail="AI service not configured. Set OPENAI_API_KEY or ANTHROPIC_API_KEY.",
        )
    return ai


# ── Request Models ────────────────────────────────────────────────────

class ConversationCreate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    generate_welcome: bool = True


class ConversationUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=255)


class MessageCreate(BaseModel):
    content: str = Field(min_length=1)
    metadata: dict = Field(default_factory=dict)


class CompletionRequest(BaseModel):
    conversation_id: str
    stream: bool = True
    system_prompt: Optional[str] = None


# ── Helpers ───────────────────────────────────────────────────────────

async def _owned_conversation(
    db: AsyncSession, user: User, conversation_id: str, with_messages: bool = False,
) -> ChatConversation:
    conversation = await get_conversation(
        db, user.id, parse_uuid(conversation_id, "conversation_id"), with_messages=with_messages,
    )
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


async def _welcome_text(db: AsyncSession, user: User, ai: Optional[AIService]) -> tuple[str, str]:
    """(text, source). Falls back to a static greeting when the model is unavailable."""
    if ai is None:
        return FALLBACK_WELCOME_MESSAGE, "fallback"

    business = await get_step_row(db, BusinessCore, user.id)
    user_context = None
    if business:
        user_context = f"Business: {business.business_name}; industry: {business.industry or 'unknown'}"
    try:
        text = await ai.generate_welcome_message(user_context)
    except AI_PROVIDER_ERRORS as e:
        logger.warning(f"Welcome message generation failed, using fallback: {e}")
        return FALLBACK_WELCOME_MESSAGE, "fallback"
    if not text:
        return FALLBACK_WELCOME_MESSAGE, "fallback"
    return text, ai.model_id


# ── Conversations ─────────────────────────────────────────────────────

@router.post("/conversations", status_code=201)
async def create_conversation(
    payload: ConversationCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ai: Optional[AIService] = Depends(get_optional_ai_service),
):
    """Create a conversation that opens with an assistant welcome message."""
    conversation = ChatConversation(user_id=user.id, title=(payload.title or DEFAULT_TITLE).strip())
    db.add(conversation)
    await db.flush()

    messages = []
    if payload.generate_welcome:
        text, source = await _welcome_text(db, user, ai)
        welcome = await add_message(
            db, conversation, MessageRole.ASSISTANT.value, text,
            {"welcome": True, "model": source, "timestamp": utcnow().isoformat()},
        )
        messages.append(welcome)

    logger.info(f"Conversation {conversation.id} created for user {user.id}")
    return serialize_conversation(conversation, messages)


@router.get("/conversations")
async def get_conversations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return [serialize_conversation(c) for c in await list_conversations(db, user.id)]


@router.get("/conversations/{conversation_id}")
async def get_conversation_detail(
    conversation_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await _owned_conversation(db, user, conversation_id, with_messages=True)
    return serialize_conversation(conversation, conversation.messages)


@router.patch("/conversations/{conversation_id}")
async def rename_conversation(
    conversation_id: str,
    payload: ConversationUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await _owned_conversation(db, user, conversation_id)
    conversation.title = payload.title.strip()
    await db.flush()
    return serialize_conversation(conversation)


@router.delete("/conversations/{conversation_id}")
async def remove_conversation(
    conversation_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await _owned_conversation(db, user, conversation_id)
    await delete_conversation(db, conversation)
    logger.info(f"Conversation {conversation_id} deleted for user {user.id}")
    return {"success": True}


# ── Messages ──────────────────────────────────────────────────────────

@router.get("/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await _owned_conversation(db, user, conversation_id)
    return [serialize_message(m) for m in await list_messages(db, conversation.id)]


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def post_message(
    conversation_id: str,
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Append a user message and flag campaign-creation intent for the UI."""
    conversation = await _owned_conversation(db, user, conversation_id)
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="Message content must not be empty")

    intent = detect_campaign_creation_intent(payload.content)
    message = await add_message(
        db, conversation, MessageRole.USER.value, payload.content,
        {**payload.metadata, "campaign_creation_intent": intent},
    )
    return {"message": serialize_message(message), "campaign_creation_intent": intent}


# ── Completions ───────────────────────────────────────────────────────

async def _stream_completion(
    ai: AIService,
    user_id: uuid.UUID,
    conversation_id: uuid.UUID,
    history: list[dict],
    system_prompt: Optional[str],
) -> AsyncIterator[str]:
    # Runs after the request session is closed, so it persists through its own
    async with async_session() as db:
        try:
            chunks = []
            async for delta in ai.stream_chat(history, system_prompt):
                chunks.append(delta)
                yield sse_event({"content": delta})

            text = "".join(chunks).strip()
            if not text:
                raise ValueError("Model returned an empty completion")

            conversation = await get_conversation(db, user_id, conversation_id)
            if conversation is None:
                raise LookupError(f"Conversation {conversation_id} disappeared during streaming")
            message = await add_message(
                db, conversation, MessageRole.ASSISTANT.value, text,
                {"model": ai.model_id, "streamed": True, "timestamp": utcnow().isoformat()},
            )
            await db.commit()
            yield sse_event({"savedMessageId": str(message.id)})
        except Exception as e:
            await db.rollback()
            logger.error(f"Streaming completion failed for conversation {conversation_id}: {e}", exc_info=True)
            yield sse_event({"error": STREAM_ERROR_MESSAGE})
            yield SSE_ERROR
            return

    yield SSE_DONE


@router.post("/completions")
async def create_completion(
    payload: CompletionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ai: AIService = Depends(get_ai_service),
):
    """
    Answer the latest user message of a conversation and append exactly one
    assistant message. Streams SSE by default.
    """
    conversation = await _owned_conversation(db, user, payload.conversation_id)
    messages = await list_messages(db, conversation.id)
    history = history_for_llm(messages)
    if not history or history[-1]["role"] != MessageRole.USER.value:
        raise HTTPException(status_code=400, detail="Conversation has no pending user message")

    logger.info(f"Completion for conversation {conversation.id}: '{truncate(history[-1]['content'], 50)}'")

    if payload.stream:
        return StreamingResponse(
            _stream_completion(ai, user.id, conversation.id, history, payload.system_prompt),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    try:
        text = await ai.chat(history, payload.system_prompt)
    except AI_PROVIDER_ERRORS as e:
        raise HTTPException(status_code=502, detail=safe_error_detail(e, "The AI provider failed to respond."))
    if not text or not text.strip():
        raise HTTPException(status_code=502, detail="The AI provider returned an empty response.")

    message = await add_message(
        db, conversation, MessageRole.ASSISTANT.value, text.strip(),
        {"model": ai.model_id, "streamed": False, "timestamp": utcnow().isoformat()},
    )
    return {"message": serialize_message(message)}
