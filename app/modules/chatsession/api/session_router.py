from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.modules.chatsession.schema.conversations import MessageOut
from app.modules.chatsession.schema.session import (
    AuthEventRequest,
    IdentityOut,
    LoadConversationRequest,
    MessageRequest,
    MessageResponse,
    NavigateRequest,
    NoticeOut,
    NoticesResponse,
    SearchQueryRequest,
    SearchStateResponse,
    SessionCreateRequest,
    SessionStateResponse,
    TurnRequest,
)
from app.modules.chatsession.services.client_session import ClientSession
from app.modules.chatsession.services.conversation import Role
from app.modules.chatsession.services.identity import Identity, SignedIn, SignedOut
from app.modules.chatsession.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["Chat Session"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> ClientSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


async def _state(session: ClientSession, registry: SessionRegistry) -> SessionStateResponse:
    identity = await session.current_identity()
    conv = session.conversation
    return SessionStateResponse(
        session_id=session.session_id,
        client_key=registry.client_key(session.session_id) or "",
        identity=IdentityOut(
            id=identity.id,
            kind=identity.kind,
            display_name=identity.display_name,
            email=identity.email,
        ),
        can_start_turn=await session.can_start_turn(),
        remaining_trial_turns=await session.remaining_trial_turns(),
        conversation_key=conv.local_key,
        remote_id=conv.remote_id,
        messages=[MessageOut.from_message(m) for m in conv.messages],
    )


def _search_state(session: ClientSession) -> SearchStateResponse:
    result = session.search.result
    return SearchStateResponse(
        state=session.search.state,
        query=result.query,
        terms=result.terms,
        matched_indices=result.matched_indices,
        cursor=result.cursor,
        current=result.current,
    )


@router.post("", response_model=SessionStateResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    req: SessionCreateRequest | None = None,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStateResponse:
    session = await registry.create(req.client_key if req else None)
    return await _state(session, registry)


@router.get("/{session_id}", response_model=SessionStateResponse)
async def get_session_state(
    session: ClientSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStateResponse:
    return await _state(session, registry)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> None:
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail="Session not found")


@router.post("/{session_id}/turns", response_model=MessageResponse)
async def start_turn(req: TurnRequest, session: ClientSession = Depends(get_session)) -> MessageResponse:
    """Gate a user turn on the trial quota, then append the user message."""
    if not await session.start_turn():
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Trial limit reached. Please sign up to continue.",
        )
    message = await session.add_message(Role.USER, req.content)
    return MessageResponse(
        message=MessageOut.from_message(message),
        remote_id=session.conversation.remote_id,
        remaining_trial_turns=await session.remaining_trial_turns(),
    )


@router.post("/{session_id}/messages", response_model=MessageResponse)
async def add_message(req: MessageRequest, session: ClientSession = Depends(get_session)) -> MessageResponse:
    """Append a message produced outside the turn gate (assistant replies, system errors)."""
    if req.role is Role.USER:
        raise HTTPException(status_code=400, detail="User messages go through /turns")
    message = await session.add_message(req.role, req.content)
    return MessageResponse(
        message=MessageOut.from_message(message),
        remote_id=session.conversation.remote_id,
        remaining_trial_turns=await session.remaining_trial_turns(),
    )


@router.post("/{session_id}/auth", response_model=SessionStateResponse)
async def auth_event(
    req: AuthEventRequest,
    session: ClientSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStateResponse:
    if req.signed_in is not None and req.signed_out:
        raise HTTPException(status_code=400, detail="Send either signed_in or signed_out")
    if req.signed_in is not None:
        identity = Identity.authenticated(
            req.signed_in.id, display_name=req.signed_in.display_name, email=req.signed_in.email
        )
        await session.handle_auth_event(SignedIn(identity))
    elif req.signed_out:
        await session.handle_auth_event(SignedOut())
    else:
        raise HTTPException(status_code=400, detail="Empty auth event")
    return await _state(session, registry)


@router.post("/{session_id}/clear", response_model=SessionStateResponse)
async def clear_session(
    session: ClientSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStateResponse:
    await session.clear_session()
    return await _state(session, registry)


@router.post("/{session_id}/conversation/new", response_model=SessionStateResponse)
async def new_conversation(
    session: ClientSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStateResponse:
    await session.new_conversation()
    return await _state(session, registry)


@router.post("/{session_id}/conversation/load", response_model=SessionStateResponse)
async def load_conversation(
    req: LoadConversationRequest,
    session: ClientSession = Depends(get_session),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionStateResponse:
    if not await session.load_conversation(req.chat_id):
        raise HTTPException(status_code=404, detail="Chat not found")
    return await _state(session, registry)


@router.get("/{session_id}/search", response_model=SearchStateResponse)
async def search_state(session: ClientSession = Depends(get_session)) -> SearchStateResponse:
    return _search_state(session)


@router.post("/{session_id}/search/open", response_model=SearchStateResponse)
async def open_search(session: ClientSession = Depends(get_session)) -> SearchStateResponse:
    session.open_search()
    return _search_state(session)


@router.post("/{session_id}/search", response_model=SearchStateResponse)
async def search(req: SearchQueryRequest, session: ClientSession = Depends(get_session)) -> SearchStateResponse:
    session.search_messages(req.query)
    return _search_state(session)


@router.post("/{session_id}/search/navigate", response_model=SearchStateResponse)
async def navigate(req: NavigateRequest, session: ClientSession = Depends(get_session)) -> SearchStateResponse:
    session.navigate_search(req.direction)
    return _search_state(session)


@router.post("/{session_id}/search/close", response_model=SearchStateResponse)
async def close_search(session: ClientSession = Depends(get_session)) -> SearchStateResponse:
    session.close_search()
    return _search_state(session)


@router.get("/{session_id}/notices", response_model=NoticesResponse)
async def drain_notices(session: ClientSession = Depends(get_session)) -> NoticesResponse:
    return NoticesResponse(
        notices=[
            NoticeOut(level=n.level, code=n.code, message=n.message, created_at=n.created_at)
            for n in session.notices.drain()
        ]
    )
