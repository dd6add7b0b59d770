from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from core.exceptions import ConversationNotFound, ConversationOwnershipError, PersistenceError
from app.modules.chatsession.schema.conversations import (
    ConversationCreateRequest,
    ConversationCreateResponse,
    ConversationDeleteRequest,
    ConversationHistoryResponse,
    ConversationOut,
    ConversationSummary,
    ConversationUpdateRequest,
    StatusResponse,
)
from app.services.memory.conversation_store import SqlConversationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat/manage", tags=["Chat History"])


def get_conversation_store(request: Request) -> SqlConversationStore:
    return request.app.state.conversation_store


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConversationNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConversationOwnershipError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error(f"Chat API error: {exc}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")


@router.post("", response_model=ConversationCreateResponse)
async def create_chat(
    req: ConversationCreateRequest,
    store: SqlConversationStore = Depends(get_conversation_store),
) -> ConversationCreateResponse:
    if not req.messages:
        raise HTTPException(status_code=400, detail="Invalid chat data")
    try:
        chat_id = await store.create_conversation(req.user_id, [m.to_message() for m in req.messages])
    except Exception as e:
        raise _http_error(e) from e
    return ConversationCreateResponse(id=chat_id)


@router.put("", response_model=StatusResponse)
async def update_chat(
    req: ConversationUpdateRequest,
    store: SqlConversationStore = Depends(get_conversation_store),
) -> StatusResponse:
    if not req.chat_id or not req.messages:
        raise HTTPException(status_code=400, detail="Invalid update data")
    try:
        await store.update_conversation(
            req.chat_id, [m.to_message() for m in req.messages], owner_id=req.user_id
        )
    except Exception as e:
        raise _http_error(e) from e
    return StatusResponse()


@router.get("", response_model=None)
async def get_chats(
    chat_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    store: SqlConversationStore = Depends(get_conversation_store),
) -> ConversationOut | ConversationHistoryResponse:
    """Single chat by `chat_id` (owner only), or the user's history grouped by day (newest first)."""
    if chat_id:
        if not user_id:
            raise HTTPException(status_code=400, detail="user_id is required")
        try:
            record = await store.get_conversation(chat_id)
        except Exception as e:
            raise _http_error(e) from e
        if record.owner_id != user_id:
            raise HTTPException(status_code=403, detail="Unauthorized")
        return ConversationOut.from_record(record)

    if not user_id:
        raise HTTPException(status_code=400, detail="chat_id or user_id is required")

    records = await store.list_conversations(user_id, limit=limit)
    history: Dict[str, List[ConversationSummary]] = {}
    for record in records:
        day = record.updated_at.date().isoformat() if record.updated_at else "unknown"
        history.setdefault(day, []).append(
            ConversationSummary(
                id=record.remote_id,
                title=record.title,
                message_count=len(record.messages),
                updated_at=record.updated_at,
            )
        )
    return ConversationHistoryResponse(user_id=user_id, history=history)


@router.delete("", response_model=StatusResponse)
async def delete_chat(
    req: ConversationDeleteRequest,
    store: SqlConversationStore = Depends(get_conversation_store),
) -> StatusResponse:
    try:
        await store.delete_conversation(req.chat_id, owner_id=req.user_id)
    except Exception as e:
        raise _http_error(e) from e
    return StatusResponse()
