"""Database initialization for the conversation record tables."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.services.memory.models import Base
from app.services.memory.db import engine as default_engine

logger = logging.getLogger(__name__)


async def init_database(engine: Optional[AsyncEngine] = None) -> bool:
    """Create tables if they don't exist. Returns False instead of raising."""
    engine = engine or default_engine
    try:
        logger.info(f"Initializing database at {engine.url}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return False


if __name__ == "__main__":
    asyncio.run(init_database())
