from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.modules.chatsession.services.conversation import ConversationRecord, Message, Role


class MessageIn(BaseModel):
    id: str
    role: Role
    content: str = ""
    sequence: int = Field(ge=0)

    def to_message(self) -> Message:
        return Message(id=self.id, role=self.role, content=self.content, sequence=self.sequence)


class MessageOut(BaseModel):
    id: str
    role: Role
    content: str
    sequence: int

    @classmethod
    def from_message(cls, message: Message) -> "MessageOut":
        return cls(id=message.id, role=message.role, content=message.content, sequence=message.sequence)


class ConversationCreateRequest(BaseModel):
    user_id: str
    messages: List[MessageIn] = Field(default_factory=list)


class ConversationCreateResponse(BaseModel):
    id: str


class ConversationUpdateRequest(BaseModel):
    chat_id: str
    user_id: str
    messages: List[MessageIn] = Field(default_factory=list)


class ConversationDeleteRequest(BaseModel):
    chat_id: str
    user_id: str


class ConversationOut(BaseModel):
    id: str
    user_id: str
    title: str
    messages: List[MessageOut] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ConversationRecord) -> "ConversationOut":
        return cls(
            id=record.remote_id,
            user_id=record.owner_id,
            title=record.title,
            messages=[MessageOut.from_message(m) for m in record.messages],
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ConversationSummary(BaseModel):
    id: str
    title: str
    message_count: int
    updated_at: Optional[datetime] = None


class ConversationHistoryResponse(BaseModel):
    user_id: str
    history: Dict[str, List[ConversationSummary]] = Field(default_factory=dict)  # ISO date -> chats


class StatusResponse(BaseModel):
    status: str = Field("ok")
