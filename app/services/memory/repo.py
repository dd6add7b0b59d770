from typing import List, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from .models import Conversation, ChatMessage, _now
from app.modules.chatsession.services.conversation import ConversationRecord, Message, Role


def _rows(messages: Sequence[Message]) -> List[ChatMessage]:
    return [
        ChatMessage(message_id=m.id, sequence=m.sequence, role=Role(m.role).value, content=m.content)
        for m in messages
    ]


async def create_conversation(db: AsyncSession, user_id: str, title: str, messages: Sequence[Message]) -> Conversation:
    conv = Conversation(user_id=user_id, title=title, messages=_rows(messages))
    db.add(conv)
    await db.flush()
    return conv


async def replace_messages(db: AsyncSession, conv: Conversation, title: str, messages: Sequence[Message]) -> Conversation:
    # whole-document overwrite: orphaned rows are deleted by the relationship cascade
    conv.messages = _rows(messages)
    conv.title = title
    conv.updated_at = _now()
    await db.flush()
    return conv


async def get_conversation(db: AsyncSession, conversation_id: str) -> Optional[Conversation]:
    return await db.get(Conversation, conversation_id)


async def list_conversations(db: AsyncSession, user_id: str, limit: int = 50) -> List[Conversation]:
    q = select(Conversation).where(Conversation.user_id == user_id).order_by(Conversation.updated_at.desc()).limit(limit)
    res = await db.execute(q)
    return list(res.scalars().all())


async def delete_conversation(db: AsyncSession, conv: Conversation) -> None:
    await db.delete(conv)
    await db.flush()


def to_record(conv: Conversation) -> ConversationRecord:
    return ConversationRecord(
        remote_id=conv.id,
        owner_id=conv.user_id,
        title=conv.title,
        messages=[
            Message(id=m.message_id, role=Role(m.role), content=m.content, sequence=m.sequence)
            for m in sorted(conv.messages, key=lambda r: r.sequence)
        ],
        created_at=conv.created_at,
        updated_at=conv.updated_at,
    )
