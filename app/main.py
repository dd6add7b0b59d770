# app/main.py
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from app.modules.chatsession.services.session_registry import SessionRegistry
from app.modules.router import router as modules_router
from app.services.memory.conversation_store import SqlConversationStore
from app.services.memory.db import build_engine, build_sessionmaker
from app.services.memory.init_db import init_database
from core.config import Settings, settings as default_settings
from core.logging import configure_logging, get_logger

logger = get_logger(__name__)


def wire_services(app: FastAPI, settings: Settings, engine: AsyncEngine) -> None:
    """Wire the conversation store and the session registry into app.state."""
    logger.info("Wiring session services...")
    app.state.settings = settings
    app.state.engine = engine
    app.state.conversation_store = SqlConversationStore(
        build_sessionmaker(engine), title_max_chars=settings.CHAT_TITLE_MAX_CHARS
    )
    app.state.sessions = SessionRegistry(app.state.conversation_store, settings)
    logger.info("Service wiring completed successfully")


def create_app(settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)
    engine = engine or build_engine(settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting chat session API...")
        if not await init_database(engine):
            logger.warning("Chat records will not be persisted until the database is reachable")
        yield
        await app.state.sessions.shutdown()
        await engine.dispose()
        logger.info("Chat session API stopped")

    app = FastAPI(title=settings.PROJECT_NAME, version="1.0.0", debug=settings.DEBUG, lifespan=lifespan)
    wire_services(app, settings, engine)
    app.include_router(modules_router, prefix=settings.FASTAPI_API_V1_PATH)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for route in app.routes:
        logging.getLogger("router.map").debug(
            "ROUTE %s %s", ",".join(sorted(getattr(route, "methods", None) or [])), route.path
        )

    @app.api_route("/healthz", methods=["GET", "HEAD"], include_in_schema=False)
    async def healthz():
        return JSONResponse({"status": "ok", "sessions": len(app.state.sessions)})

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app.main:app", host="0.0.0.0", port=port)
