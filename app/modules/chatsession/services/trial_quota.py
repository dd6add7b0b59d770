from __future__ import annotations

import logging
from dataclasses import dataclass

from app.modules.chatsession.services.local_store import KeyValueStore

logger = logging.getLogger(__name__)

IDENTITY_KEY = "identity-id"
USED_KEY = "used-count"


def identity_marker_key(prefix: str = "trial") -> str:
    return f"{prefix}:{IDENTITY_KEY}"


def used_count_key(identity_id: str, prefix: str = "trial") -> str:
    return f"{prefix}:{identity_id}:{USED_KEY}"


@dataclass(frozen=True)
class TrialQuota:
    identity_id: str
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class TrialQuotaLedger:
    """
    Conversation counter for one anonymous identity.

    Read-modify-write without locking: two processes sharing the same
    identity can under-count.
    """

    def __init__(self, store: KeyValueStore, identity_id: str, limit: int, prefix: str = "trial"):
        if limit < 0:
            raise ValueError(f"Trial limit must be >= 0, got {limit}")
        self.store = store
        self.identity_id = identity_id
        self.limit = limit
        self._key = used_count_key(identity_id, prefix)

    async def used(self) -> int:
        raw = await self.store.get(self._key)
        if raw is None:
            return 0
        try:
            return max(0, int(raw))
        except ValueError:
            logger.warning(f"[quota] Corrupt counter for {self.identity_id}: {raw!r}, treating as 0")
            return 0

    async def increment(self) -> int:
        used = await self.used() + 1
        await self.store.set(self._key, str(used))
        logger.debug(f"[quota] {self.identity_id} used {used}/{self.limit}")
        return used

    async def remaining(self) -> int:
        return max(0, self.limit - await self.used())

    async def is_exhausted(self) -> bool:
        return await self.used() >= self.limit

    async def reset(self) -> None:
        await self.store.remove(self._key)

    async def snapshot(self) -> TrialQuota:
        return TrialQuota(identity_id=self.identity_id, used=await self.used(), limit=self.limit)
