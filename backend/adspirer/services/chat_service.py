"""
Chat Service — conversation / message persistence and Server-Sent Event framing
shared by the chat and campaign-query routers.
"""

import json
import logging
import uuid
from typing import Optional

from sqlalchemy import select, func, delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from adspirer.models import ChatConversation, ChatMessage, MessageRole
from adspirer.utils import utcnow, truncate

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Conversation"
TITLE_MAX_LENGTH = 60

SSE_DONE = "data: [DONE]\n\n"
SSE_ERROR = "data: [ERROR]\n\n"


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def get_conversation(
    db: AsyncSession,
    user_id: uuid.UUID,
    conversation_id: uuid.UUID,
    with_messages: bool = False,
) -> Optional[ChatConversation]:
    """Load a conversation only if it belongs to the user."""
    stmt = select(ChatConversation).where(
        ChatConversation.id == conversation_id,
        ChatConversation.user_id == user_id,
    )
    if with_messages:
        stmt = stmt.options(selectinload(ChatConversation.messages))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_conversations(db: AsyncSession, user_id: uuid.UUID) -> list[ChatConversation]:
    result = await db.execute(
        select(ChatConversation)
        .where(ChatConversation.user_id == user_id)
        .order_by(ChatConversation.updated_at.desc())
    )
    return list(result.scalars().all())


async def list_messages(db: AsyncSession, conversation_id: uuid.UUID) -> list[ChatMessage]:
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.sequence, ChatMessage.created_at)
    )
    return list(result.scalars().all())


async def add_message(
    db: AsyncSession,
    conversation: ChatConversation,
    role: str,
    content: str,
    metadata: Optional[dict] = None,
) -> ChatMessage:
    """
    Append a message at the end of the conversation.
    Empty content is rejected; a first user message also names an untitled conversation.
    """
    if not content or not content.strip():
        raise ValueError("Message content must not be empty")
    if role not in {r.value for r in MessageRole}:
        raise ValueError(f"Unknown message role: {role}")

    # Touching the conversation row first takes its write lock, so concurrent
    # writers to one conversation read the max sequence one at a time.
    now = utcnow()
    await db.execute(
        update(ChatConversation)
        .where(ChatConversation.id == conversation.id)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    last = await db.execute(
        select(func.max(ChatMessage.sequence)).where(ChatMessage.conversation_id == conversation.id)
    )
    message = ChatMessage(
        conversation_id=conversation.id,
        role=role,
        content=content,
        message_metadata=metadata or {},
        sequence=(last.scalar() or 0) + 1,
    )
    db.add(message)

    if role == MessageRole.USER.value and conversation.title == DEFAULT_TITLE:
        conversation.title = truncate(content.strip().splitlines()[0], TITLE_MAX_LENGTH)
    conversation.updated_at = now

    await db.flush()
    return message


async def delete_conversation(db: AsyncSession, conversation: ChatConversation) -> None:
    await db.execute(delete(ChatMessage).where(ChatMessage.conversation_id == conversation.id))
    await db.execute(delete(ChatConversation).where(ChatConversation.id == conversation.id))


def history_for_llm(messages: list[ChatMessage]) -> list[dict]:
    """User/assistant turns in order; stored system notes are not replayed."""
    return [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.role in (MessageRole.USER.value, MessageRole.ASSISTANT.value)
    ]


def serialize_message(message: ChatMessage) -> dict:
    return {
        "id": str(message.id),
        "conversation_id": str(message.conversation_id),
        "role": message.role,
        "content": message.content,
        "metadata": message.message_metadata or {},
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


def serialize_conversation(conversation: ChatConversation, messages: Optional[list[ChatMessage]] = None) -> dict:
    data = {
        "id": str(conversation.id),
        "title": conversation.title,
        "created_at": conversation.created_at.isoformat() if conversation.created_at else None,
        "updated_at": conversation.updated_at.isoformat() if conversation.updated_at else None,
    }
    if messages is not None:
        data["messages"] = [serialize_message(m) for m in messages]
    return data
