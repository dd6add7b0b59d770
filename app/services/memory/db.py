from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings

DATABASE_URL = settings.DATABASE_URL


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(url or DATABASE_URL, echo=settings.DATABASE_ECHO, future=True)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = build_engine()
