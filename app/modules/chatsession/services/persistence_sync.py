"""
Conversation persistence synchronizer.

Maps one in-memory, append-only message list to at most one remote
conversation record: created once, then overwritten with the full list on
every change.

Per conversation the synchronizer is a small state machine:

    IDLE --sync--> CREATING --ok--> UPDATING(pending?) --drained--> IDLE
                      |                    |
                      +------failure-------+--> notice, IDLE

Only one request is in flight per conversation. Calls that arrive meanwhile
park their message list in a single pending slot (newest wins) and wait for
the flight to drain; the driver replays the pending list as an update once
the in-flight request resolves.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence

from app.modules.chatsession.services.conversation import Message
from app.modules.chatsession.services.notices import SAVE_FAILED, SAVED, NoticeBoard

logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    """Remote store with whole-document replacement semantics (last write wins)."""

    async def create_conversation(self, owner_id: str, messages: Sequence[Message]) -> str: ...

    async def update_conversation(self, remote_id: str, messages: Sequence[Message]) -> None: ...


class SyncState(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    UPDATING = "updating"


class ConversationSynchronizer:
    def __init__(self, store: ConversationStore, notices: NoticeBoard, local_key: str):
        self.store = store
        self.notices = notices
        self.local_key = local_key
        self.state = SyncState.IDLE
        self.remote_id: Optional[str] = None
        self._owner_id: Optional[str] = None
        self._pending: Optional[List[Message]] = None
        self._flight: Optional[asyncio.Future] = None

    @property
    def pending(self) -> Optional[List[Message]]:
        return self._pending

    @property
    def in_flight(self) -> bool:
        return self._flight is not None

    def _adopt(self, remote_id: Optional[str]) -> None:
        if not remote_id or remote_id == self.remote_id:
            return
        if self.remote_id is not None:
            logger.warning(
                f"[sync] {self.local_key}: caller passed {remote_id} but record is {self.remote_id}; keeping existing"
            )
            return
        self.remote_id = remote_id

    async def sync(
        self,
        messages: Sequence[Message],
        remote_id: Optional[str],
        owner_id: Optional[str],
    ) -> Optional[str]:
        """
        Reconcile the remote record with `messages`.

        Returns the remote id known after this call; None while the record
        has never been created successfully. Store failures never propagate:
        they become `save_failed` notices and are retried on the next change.
        """
        self._adopt(remote_id)

        if not owner_id or not messages:
            logger.debug(f"[sync] {self.local_key}: nothing to sync (owner={owner_id!r}, n={len(messages)})")
            return self.remote_id

        self._owner_id = owner_id
        self._pending = list(messages)

        if self._flight is not None:
            logger.debug(f"[sync] {self.local_key}: {self.state.value} in flight, coalescing {len(messages)} messages")
            await asyncio.shield(self._flight)
            return self.remote_id

        self._flight = asyncio.get_running_loop().create_future()
        try:
            await self._drain()
        finally:
            flight, self._flight = self._flight, None
            self.state = SyncState.IDLE
            if not flight.done():
                flight.set_result(self.remote_id)
        return self.remote_id

    async def _drain(self) -> None:
        while self._pending is not None:
            messages, self._pending = self._pending, None
            if self.remote_id is None:
                await self._create(messages)
            else:
                await self._update(messages)

    async def _create(self, messages: List[Message]) -> None:
        self.state = SyncState.CREATING
        try:
            remote_id = await self.store.create_conversation(self._owner_id, messages)
        except Exception as e:
            logger.warning(f"[sync] {self.local_key}: create failed (non-fatal): {e}")
            self.notices.error(SAVE_FAILED, "Failed to save chat")
            return
        if not remote_id:
            logger.warning(f"[sync] {self.local_key}: store returned no id for create")
            self.notices.error(SAVE_FAILED, "Failed to save chat")
            return
        self.remote_id = remote_id
        logger.info(f"[sync] {self.local_key}: created remote record {remote_id} with {len(messages)} messages")
        self.notices.success(SAVED, "Chat saved successfully")

    async def _update(self, messages: List[Message]) -> None:
        self.state = SyncState.UPDATING
        try:
            await self.store.update_conversation(self.remote_id, messages)
        except Exception as e:
            logger.warning(f"[sync] {self.local_key}: update of {self.remote_id} failed (non-fatal): {e}")
            self.notices.error(SAVE_FAILED, "Failed to save chat")
            return
        logger.debug(f"[sync] {self.local_key}: updated {self.remote_id} with {len(messages)} messages")


class PersistenceSynchronizer:
    """Hands out one single-flight synchronizer per local conversation key."""

    def __init__(self, store: ConversationStore, notices: NoticeBoard):
        self.store = store
        self.notices = notices
        self._by_key: Dict[str, ConversationSynchronizer] = {}

    def for_conversation(self, local_key: str) -> ConversationSynchronizer:
        sync = self._by_key.get(local_key)
        if sync is None:
            sync = ConversationSynchronizer(self.store, self.notices, local_key)
            self._by_key[local_key] = sync
        return sync

    async def sync(
        self,
        local_key: str,
        messages: Sequence[Message],
        remote_id: Optional[str],
        owner_id: Optional[str],
    ) -> Optional[str]:
        return await self.for_conversation(local_key).sync(messages, remote_id, owner_id)

    def forget(self, local_key: str) -> None:
        self._by_key.pop(local_key, None)

    def reset(self) -> None:
        self._by_key.clear()
