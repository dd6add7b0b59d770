from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.modules.chatsession.schema.conversations import MessageOut
from app.modules.chatsession.services.conversation import Role
from app.modules.chatsession.services.identity import IdentityKind
from app.modules.chatsession.services.message_search import Direction, PanelState


class IdentityOut(BaseModel):
    id: str
    kind: IdentityKind
    display_name: str
    email: Optional[str] = None


class SessionCreateRequest(BaseModel):
    client_key: Optional[str] = Field(
        None, description="Stable per-client key (browser storage equivalent); a new one is issued when omitted"
    )


class SessionStateResponse(BaseModel):
    session_id: str
    client_key: str
    identity: IdentityOut
    can_start_turn: bool
    remaining_trial_turns: Optional[int] = None  # None = unlimited
    conversation_key: str
    remote_id: Optional[str] = None
    messages: List[MessageOut] = Field(default_factory=list)


class TurnRequest(BaseModel):
    content: str = Field(..., min_length=1)


class MessageRequest(BaseModel):
    role: Role = Role.ASSISTANT
    content: str = ""


class MessageResponse(BaseModel):
    message: MessageOut
    remote_id: Optional[str] = None
    remaining_trial_turns: Optional[int] = None


class SignedInPayload(BaseModel):
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None


class AuthEventRequest(BaseModel):
    signed_in: Optional[SignedInPayload] = None
    signed_out: bool = False


class LoadConversationRequest(BaseModel):
    chat_id: str


class SearchQueryRequest(BaseModel):
    query: str = ""


class NavigateRequest(BaseModel):
    direction: Direction


class SearchStateResponse(BaseModel):
    state: PanelState
    query: str = ""
    terms: List[str] = Field(default_factory=list)
    matched_indices: List[int] = Field(default_factory=list)
    cursor: Optional[int] = None
    current: Optional[int] = None


class NoticeOut(BaseModel):
    level: str
    code: str
    message: str
    created_at: datetime


class NoticesResponse(BaseModel):
    notices: List[NoticeOut] = Field(default_factory=list)
