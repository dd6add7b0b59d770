from __future__ import annotations

import logging
import time
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence
from uuid import uuid4

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    sequence: int


class MessageIdFactory:
    """Strictly increasing ids from the nanosecond clock; two calls in the same tick still differ."""

    def __init__(self) -> None:
        self._last = 0

    def next_id(self) -> str:
        now = time.time_ns()
        self._last = now if now > self._last else self._last + 1
        return str(self._last)

    def advance_past(self, value: int) -> None:
        """Make every later id greater than `value`."""
        if value > self._last:
            self._last = value


def derive_title(messages: Sequence[Message], max_chars: int = 30) -> str:
    if not messages:
        return "New chat"
    first = messages[0].content
    return first[:max_chars] + ("..." if len(first) > max_chars else "")


@dataclass
class ConversationRecord:
    """Remote, persisted counterpart of a conversation."""

    remote_id: str
    owner_id: str
    title: str
    messages: List[Message]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Conversation:
    """Append-only message list for one browser-session conversation."""

    owner_id: str
    local_key: str = field(default_factory=lambda: uuid4().hex)
    remote_id: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    _ids: MessageIdFactory = field(default_factory=MessageIdFactory, repr=False)

    def append(self, role: Role, content: str) -> Message:
        message = Message(
            id=self._ids.next_id(),
            role=Role(role),
            content=content or "",
            sequence=len(self.messages),
        )
        self.messages.append(message)
        return message

    def adopt_remote_id(self, remote_id: Optional[str]) -> None:
        if not remote_id or remote_id == self.remote_id:
            return
        if self.remote_id is not None:
            logger.warning(
                f"[conversation] {self.local_key} already bound to {self.remote_id}, ignoring {remote_id}"
            )
            return
        self.remote_id = remote_id

    def snapshot(self) -> List[Message]:
        return list(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    @classmethod
    def restore(
        cls,
        owner_id: str,
        remote_id: str,
        messages: Sequence[Message],
    ) -> "Conversation":
        """Rebuild a conversation from a stored record; sequences are renumbered by position."""
        conv = cls(owner_id=owner_id, remote_id=remote_id)
        for msg in sorted(messages, key=lambda m: m.sequence):
            conv.messages.append(
                Message(id=msg.id, role=msg.role, content=msg.content, sequence=len(conv.messages))
            )
        # keep freshly issued ids above anything already stored
        numeric = [int(m.id) for m in conv.messages if m.id.isdigit()]
        if numeric:
            conv._ids.advance_past(max(numeric))
        return conv
