# app/modules/router.py
from fastapi import APIRouter
from app.modules.chatsession.api.session_router import router as session_router
from app.modules.chatsession.api.conversations_router import router as conversations_router

router = APIRouter()
router.include_router(session_router)
router.include_router(conversations_router)
