import asyncio
from typing import Dict, List, Optional, Sequence

import pytest

from core.config import Settings
from core.exceptions import ConversationNotFound, PersistenceError, StorageUnavailable
from app.modules.chatsession.services.client_session import ClientSession
from app.modules.chatsession.services.conversation import ConversationRecord, Message, derive_title
from app.modules.chatsession.services.local_store import MemoryKeyValueStore


class FakeConversationStore:
    """In-memory remote store that yields to the event loop on every call, like a network hop."""

    def __init__(self, hops: int = 3):
        self.hops = hops
        self.records: Dict[str, ConversationRecord] = {}
        self.create_calls: List[List[Message]] = []
        self.update_calls: List[tuple] = []
        self.fail_creates = 0
        self.fail_updates = 0

    async def _hop(self) -> None:
        for _ in range(self.hops):
            await asyncio.sleep(0)

    async def create_conversation(self, owner_id: str, messages: Sequence[Message]) -> str:
        self.create_calls.append(list(messages))
        await self._hop()
        if self.fail_creates:
            self.fail_creates -= 1
            raise PersistenceError("create failed")
        remote_id = f"chat-{len(self.records) + 1}"
        self.records[remote_id] = ConversationRecord(
            remote_id=remote_id, owner_id=owner_id, title=derive_title(messages), messages=list(messages)
        )
        return remote_id

    async def update_conversation(self, remote_id: str, messages: Sequence[Message]) -> None:
        self.update_calls.append((remote_id, list(messages)))
        await self._hop()
        if self.fail_updates:
            self.fail_updates -= 1
            raise PersistenceError("update failed")
        self.records[remote_id].messages = list(messages)

    async def get_conversation(self, remote_id: str) -> ConversationRecord:
        record = self.records.get(remote_id)
        if record is None:
            raise ConversationNotFound(remote_id)
        return record


class BrokenKeyValueStore:
    """Local store whose backend is switched off (e.g. storage disabled in the browser)."""

    def __init__(self):
        self.calls = 0

    async def get(self, key: str) -> Optional[str]:
        self.calls += 1
        raise StorageUnavailable("storage disabled")

    async def set(self, key: str, value: str) -> None:
        self.calls += 1
        raise StorageUnavailable("storage disabled")

    async def remove(self, key: str) -> None:
        self.calls += 1
        raise StorageUnavailable("storage disabled")


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'chats.sqlite'}",
        REDIS_URL=None,
        TRIAL_CONVERSATION_LIMIT=3,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def local_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def remote_store() -> FakeConversationStore:
    return FakeConversationStore()


@pytest.fixture
async def session(local_store, remote_store, test_settings) -> ClientSession:
    return await ClientSession.open(local_store, remote_store, settings=test_settings)
