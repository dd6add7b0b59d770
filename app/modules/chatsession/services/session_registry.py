from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Dict, Optional
from uuid import uuid4

from core.config import Settings
from app.modules.chatsession.services.client_session import ClientSession
from app.modules.chatsession.services.local_store import (
    KeyValueStore,
    build_local_store,
    build_redis_client,
)
from app.modules.chatsession.services.persistence_sync import ConversationStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    In-process map of live client sessions, owned by the application.

    Local stores are kept per client key and outlive individual sessions,
    the way browser storage outlives a reloaded tab. At most
    SESSION_MAX_CLIENT_STORES of them are kept: when the map is full, the
    least recently used store whose client has no live session is dropped.
    A dropped memory-backed store forgets its anonymous identity; a
    Redis-backed one only loses its wrapper, the keys stay in Redis.
    """

    def __init__(self, conversation_store: ConversationStore, settings: Settings):
        self.conversation_store = conversation_store
        self.settings = settings
        self.max_client_stores = settings.SESSION_MAX_CLIENT_STORES
        self._sessions: Dict[str, ClientSession] = {}
        self._client_keys: Dict[str, str] = {}
        self._stores: "OrderedDict[str, KeyValueStore]" = OrderedDict()
        self._redis = (
            build_redis_client(settings.REDIS_URL, socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECS)
            if settings.REDIS_URL
            else None
        )

    def _local_store(self, client_key: str) -> KeyValueStore:
        store = self._stores.get(client_key)
        if store is None:
            store = build_local_store(client_key, redis_client=self._redis)
            self._stores[client_key] = store
        self._stores.move_to_end(client_key)
        self._evict(keep=client_key)
        return store

    def _evict(self, keep: str) -> None:
        live = set(self._client_keys.values())
        live.add(keep)
        for client_key in list(self._stores):
            if len(self._stores) <= self.max_client_stores:
                break
            if client_key in live:
                continue
            del self._stores[client_key]
            logger.debug(f"[sessions] Dropped local store of idle client {client_key}")

    def has_store(self, client_key: str) -> bool:
        return client_key in self._stores

    async def create(self, client_key: Optional[str] = None) -> ClientSession:
        client_key = client_key or uuid4().hex
        session = await ClientSession.open(
            self._local_store(client_key),
            self.conversation_store,
            settings=self.settings,
        )
        self._sessions[session.session_id] = session
        self._client_keys[session.session_id] = client_key
        logger.info(f"[sessions] Opened {session.session_id} for client {client_key}")
        return session

    def get(self, session_id: str) -> Optional[ClientSession]:
        return self._sessions.get(session_id)

    def client_key(self, session_id: str) -> Optional[str]:
        return self._client_keys.get(session_id)

    def close(self, session_id: str) -> bool:
        """Forget a session; its client's store stays until evicted."""
        self._client_keys.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    async def shutdown(self) -> None:
        self._sessions.clear()
        self._client_keys.clear()
        self._stores.clear()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def __len__(self) -> int:
        return len(self._sessions)
