"""
ClientSession: the session context owned by the application.

One instance stands for one client (one browser tab): it threads the same
message list through the quota gate, the persistence synchronizer and the
search index, and owns the identity session manager. Nothing here is a
module-level singleton, so tests can run several sessions side by side.

Build sessions with ``await ClientSession.open(...)``; the first
conversation needs the identity read from the local store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional
from uuid import uuid4

from core.config import Settings, settings as default_settings
from core.exceptions import ConversationNotFound, PersistenceError
from app.modules.chatsession.services.conversation import (
    Conversation,
    ConversationRecord,
    Message,
    Role,
)
from app.modules.chatsession.services.identity import Identity, IdentityEvent
from app.modules.chatsession.services.local_store import KeyValueStore
from app.modules.chatsession.services.message_search import (
    Direction,
    MessageSearchIndex,
    SearchPanel,
)
from app.modules.chatsession.services.notices import TRIAL_LIMIT_REACHED, NoticeBoard
from app.modules.chatsession.services.persistence_sync import (
    ConversationStore,
    PersistenceSynchronizer,
)
from app.modules.chatsession.services.session_manager import IdentitySessionManager

logger = logging.getLogger(__name__)


class ClientSession:
    def __init__(
        self,
        local_store: KeyValueStore,
        conversation_store: ConversationStore,
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None,
    ):
        cfg = settings or default_settings
        self.session_id = session_id or uuid4().hex
        self.conversation_store = conversation_store
        self.notices = NoticeBoard()
        self.identity = IdentitySessionManager(
            local_store,
            trial_limit=cfg.TRIAL_CONVERSATION_LIMIT,
            key_prefix=cfg.TRIAL_KEY_PREFIX,
            notices=self.notices,
            on_signed_in=self._migrate_conversation,
            on_reset=self._reset_conversation,
        )
        self.synchronizer = PersistenceSynchronizer(conversation_store, self.notices)
        self.search_index = MessageSearchIndex(fuzzy_cutoff=cfg.SEARCH_FUZZY_CUTOFF)
        self.search = SearchPanel(self.search_index)
        self.conversation: Optional[Conversation] = None
        self._turn_counted = False
        self._turn_lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        local_store: KeyValueStore,
        conversation_store: ConversationStore,
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None,
    ) -> "ClientSession":
        session = cls(local_store, conversation_store, settings=settings, session_id=session_id)
        await session._reset_conversation()
        return session

    # --- identity & quota -------------------------------------------------

    async def current_identity(self) -> Identity:
        return await self.identity.current_identity()

    async def remaining_trial_turns(self) -> Optional[int]:
        return await self.identity.remaining_trial_turns()

    async def can_start_turn(self) -> bool:
        return self._turn_counted or await self.identity.can_start_turn()

    async def start_turn(self) -> bool:
        """
        Quota gate for a user turn.

        Only the first turn of a conversation counts against the trial;
        follow-up turns in a conversation that was already admitted pass.
        """
        async with self._turn_lock:
            if self._turn_counted:
                return True
            if not await self.identity.can_start_turn():
                self.notices.error(TRIAL_LIMIT_REACHED, "Trial limit reached. Please sign up to continue.")
                return False
            await self.identity.record_turn_started()
            self._turn_counted = True
            return True

    async def handle_auth_event(self, event: IdentityEvent) -> Identity:
        await self.identity.on_identity_changed(event)
        return await self.current_identity()

    async def clear_session(self) -> Identity:
        return await self.identity.clear_session()

    # --- conversation ------------------------------------------------------

    async def add_message(self, role: Role, content: str) -> Message:
        message = self.conversation.append(role, content)
        self.search_index.rebuild(self.conversation.messages)
        await self.sync()
        return message

    async def add_system_error(self, content: str) -> Message:
        return await self.add_message(Role.SYSTEM, content)

    async def sync(self) -> Optional[str]:
        conv = self.conversation
        identity = await self.current_identity()
        # Anonymous chats stay in memory; so does a chat whose migration failed
        if identity.is_anonymous or conv.owner_id != identity.id or not conv.messages:
            return conv.remote_id
        remote_id = await self.synchronizer.sync(
            conv.local_key, conv.snapshot(), conv.remote_id, identity.id
        )
        conv.adopt_remote_id(remote_id)
        return conv.remote_id

    async def new_conversation(self) -> Conversation:
        await self._reset_conversation()
        return self.conversation

    async def load_conversation(self, remote_id: str) -> bool:
        """Resume a stored conversation of the signed-in identity."""
        identity = await self.current_identity()
        if identity.is_anonymous:
            return False
        get_conversation = getattr(self.conversation_store, "get_conversation", None)
        if get_conversation is None:
            logger.warning("[session] Conversation store cannot load records")
            return False
        try:
            record: ConversationRecord = await get_conversation(remote_id)
        except ConversationNotFound:
            self.notices.error("not_found", "Chat not found")
            return False
        except Exception as e:
            logger.warning(f"[session] Loading {remote_id} failed (non-fatal): {e}")
            self.notices.error("load_failed", "Failed to load chat")
            return False
        if record.owner_id != identity.id:
            self.notices.error("not_found", "Chat not found")
            return False

        await self._reset_conversation()
        self.conversation = Conversation.restore(identity.id, record.remote_id, record.messages)
        self.search_index.rebuild(self.conversation.messages)
        # A resumed conversation was already admitted when it started
        self._turn_counted = True
        return True

    # --- search ----------------------------------------------------------------

    def open_search(self) -> None:
        self.search.open()

    def search_messages(self, query: str) -> List[int]:
        return self.search.query(query)

    def navigate_search(self, direction: Direction) -> Optional[int]:
        return self.search.navigate(direction)

    def close_search(self) -> None:
        self.search.close()

    # --- hooks from the identity manager ---------------------------------------

    async def _migrate_conversation(self, identity: Identity) -> None:
        conv = self.conversation
        previous_owner = conv.owner_id
        if not conv.messages:
            conv.owner_id = identity.id
            return
        conv.owner_id = identity.id
        remote_id = await self.sync()
        if remote_id is None:
            # Stays in memory under the old owner; later turns are not persisted
            conv.owner_id = previous_owner
            raise PersistenceError(f"Conversation {conv.local_key} could not be saved for {identity.id}")

    async def _reset_conversation(self) -> None:
        self.synchronizer.reset()
        self.search.close()
        self.search_index.rebuild([])
        identity = await self.current_identity()
        self.conversation = Conversation(owner_id=identity.id)
        self._turn_counted = False
