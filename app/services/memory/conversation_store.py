"""
SQL-backed remote conversation store.

Implements the create/update pair the persistence synchronizer consumes,
plus the read/list/delete operations behind the chat history API. Every
write replaces the whole message list (last write wins).
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import ConversationNotFound, ConversationOwnershipError, PersistenceError
from app.modules.chatsession.services.conversation import ConversationRecord, Message, derive_title
from app.services.memory import repo

logger = logging.getLogger(__name__)


class SqlConversationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], title_max_chars: int = 30):
        self.session_factory = session_factory
        self.title_max_chars = title_max_chars

    async def create_conversation(self, owner_id: str, messages: Sequence[Message]) -> str:
        if not messages:
            raise PersistenceError("Invalid chat data: no messages")
        async with self.session_factory() as db:
            conv = await repo.create_conversation(
                db, owner_id, derive_title(messages, self.title_max_chars), messages
            )
            await db.commit()
            logger.info(f"[store] Created conversation {conv.id} for {owner_id} ({len(messages)} messages)")
            return conv.id

    async def update_conversation(
        self,
        remote_id: str,
        messages: Sequence[Message],
        owner_id: Optional[str] = None,
    ) -> None:
        if not remote_id or not messages:
            raise PersistenceError("Invalid update data")
        async with self.session_factory() as db:
            conv = await repo.get_conversation(db, remote_id)
            if conv is None:
                raise ConversationNotFound(f"Conversation {remote_id} not found")
            if owner_id is not None and conv.user_id != owner_id:
                raise ConversationOwnershipError(f"Conversation {remote_id} is not owned by {owner_id}")
            await repo.replace_messages(db, conv, derive_title(messages, self.title_max_chars), messages)
            await db.commit()
            logger.debug(f"[store] Replaced {remote_id} with {len(messages)} messages")

    async def get_conversation(self, remote_id: str) -> ConversationRecord:
        async with self.session_factory() as db:
            conv = await repo.get_conversation(db, remote_id)
            if conv is None:
                raise ConversationNotFound(f"Conversation {remote_id} not found")
            return repo.to_record(conv)

    async def list_conversations(self, owner_id: str, limit: int = 50) -> List[ConversationRecord]:
        async with self.session_factory() as db:
            rows = await repo.list_conversations(db, owner_id, limit=limit)
            return [repo.to_record(conv) for conv in rows]

    async def delete_conversation(self, remote_id: str, owner_id: Optional[str] = None) -> None:
        async with self.session_factory() as db:
            conv = await repo.get_conversation(db, remote_id)
            if conv is None:
                raise ConversationNotFound(f"Conversation {remote_id} not found")
            if owner_id is not None and conv.user_id != owner_id:
                raise ConversationOwnershipError(f"Conversation {remote_id} is not owned by {owner_id}")
            await repo.delete_conversation(db, conv)
            await db.commit()
            logger.info(f"[store] Deleted conversation {remote_id}")
