"""
Core Configuration
Consolidated configuration settings for the conversation session core
"""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Legal Chat Session Core"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Remote conversation store
    DATABASE_URL: str = "sqlite+aiosqlite:///./chat_sessions.sqlite"
    DATABASE_ECHO: bool = False

    # Local key-value store ("" keeps everything in process memory)
    REDIS_URL: str | None = None
    REDIS_SOCKET_TIMEOUT_SECS: float = 2.0

    # Live sessions
    SESSION_MAX_CLIENT_STORES: int = 1024

    # Trial quota for anonymous visitors
    TRIAL_CONVERSATION_LIMIT: int = 10
    TRIAL_KEY_PREFIX: str = "trial"

    # Message search
    SEARCH_FUZZY_CUTOFF: float = 70.0  # rapidfuzz score, 0-100

    # Chat records
    CHAT_TITLE_MAX_CHARS: int = 30

    # CORS Configuration
    CORS_ALLOWED_ORIGINS: list[str] = [
        "http://127.0.0.1:8000",
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # FastAPI
    FASTAPI_API_V1_PATH: str = "/api/v1"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Global config instance
settings = get_settings()
