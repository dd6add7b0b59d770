"""
Identity session manager.

Presents exactly one current identity (anonymous or authenticated), reacts
to auth provider events, and answers trial quota questions for anonymous
visitors through the TrialQuotaLedger.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from app.modules.chatsession.services.identity import (
    Identity,
    IdentityEvent,
    SignedIn,
    SignedOut,
    new_anonymous_id,
)
from app.modules.chatsession.services.local_store import FallbackKeyValueStore, KeyValueStore
from app.modules.chatsession.services.notices import MIGRATION_FAILED, NoticeBoard
from app.modules.chatsession.services.trial_quota import TrialQuotaLedger, identity_marker_key

logger = logging.getLogger(__name__)

SignedInHook = Callable[[Identity], Awaitable[None]]
ResetHook = Callable[[], Awaitable[None]]


class IdentitySessionManager:
    def __init__(
        self,
        store: KeyValueStore,
        trial_limit: int,
        key_prefix: str = "trial",
        notices: Optional[NoticeBoard] = None,
        on_signed_in: Optional[SignedInHook] = None,
        on_reset: Optional[ResetHook] = None,
    ):
        # Storage failures degrade to memory for the lifetime of this session
        if not isinstance(store, FallbackKeyValueStore):
            store = FallbackKeyValueStore(store)
        self.store = store
        self.trial_limit = trial_limit
        self.key_prefix = key_prefix
        self.notices = notices or NoticeBoard()
        self._on_signed_in = on_signed_in
        self._on_reset = on_reset

        self._authenticated: Optional[Identity] = None
        self._anonymous: Optional[Identity] = None
        self._ledger: Optional[TrialQuotaLedger] = None

    @property
    def _marker_key(self) -> str:
        return identity_marker_key(self.key_prefix)

    async def current_identity(self) -> Identity:
        if self._authenticated is not None:
            return self._authenticated
        return await self._anonymous_identity()

    async def _anonymous_identity(self) -> Identity:
        if self._anonymous is None:
            identity_id = await self.store.get(self._marker_key)
            if not identity_id:
                identity_id = new_anonymous_id()
                await self.store.set(self._marker_key, identity_id)
                logger.info(f"[identity] Issued anonymous identity {identity_id}")
            self._anonymous = Identity.anonymous(identity_id)
            self._ledger = TrialQuotaLedger(
                self.store, identity_id, self.trial_limit, prefix=self.key_prefix
            )
        return self._anonymous

    async def _discard_anonymous(self) -> None:
        await self.store.remove(self._marker_key)
        self._anonymous = None
        self._ledger = None

    async def ledger(self) -> Optional[TrialQuotaLedger]:
        """Quota ledger of the anonymous identity; None while authenticated."""
        if self._authenticated is not None:
            return None
        await self._anonymous_identity()
        return self._ledger

    async def can_start_turn(self) -> bool:
        ledger = await self.ledger()
        return ledger is None or not await ledger.is_exhausted()

    async def record_turn_started(self) -> None:
        """Count one conversation against the trial. Callers must call this once per conversation."""
        ledger = await self.ledger()
        if ledger is None:
            return
        used = await ledger.increment()
        logger.info(f"[quota] {ledger.identity_id} started conversation {used}/{ledger.limit}")

    async def remaining_trial_turns(self) -> Optional[int]:
        """None means unlimited (authenticated)."""
        ledger = await self.ledger()
        return None if ledger is None else await ledger.remaining()

    async def on_identity_changed(self, event: IdentityEvent) -> None:
        if isinstance(event, SignedIn):
            await self._signed_in(event.identity)
        elif isinstance(event, SignedOut):
            await self._signed_out()
        else:
            raise TypeError(f"Unsupported identity event: {event!r}")

    async def _signed_in(self, identity: Identity) -> None:
        if identity.is_anonymous:
            raise ValueError("Sign-in events must carry an authenticated identity")

        previous = self._authenticated
        if previous is not None and previous.id == identity.id:
            self._authenticated = identity
            return

        # The quota entry stays behind in the store, unreachable without the marker
        await self._discard_anonymous()
        self._authenticated = identity
        logger.info(f"[identity] Signed in as {identity.id}")

        if previous is not None:
            # Account switch: nothing of the previous owner carries over
            await self._reset()

        if self._on_signed_in is None:
            return
        try:
            await self._on_signed_in(identity)
        except Exception as e:
            logger.warning(f"[identity] Conversation migration to {identity.id} failed (non-fatal): {e}")
            self.notices.error(MIGRATION_FAILED, "Could not save your conversation")

    async def _signed_out(self) -> None:
        previous = self._authenticated
        self._authenticated = None
        await self._discard_anonymous()
        fresh = await self._anonymous_identity()
        logger.info(f"[identity] Signed out {previous.id if previous else '-'}; now {fresh.id}")
        await self._reset()

    async def clear_session(self) -> Identity:
        """Explicit "clear session": forget the anonymous identity and its trial count."""
        if self._authenticated is None:
            ledger = await self.ledger()
            if ledger is not None:
                await ledger.reset()
            await self._discard_anonymous()
        await self._reset()
        return await self.current_identity()

    async def _reset(self) -> None:
        if self._on_reset is not None:
            await self._on_reset()
