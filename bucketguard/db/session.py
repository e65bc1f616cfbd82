from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def create_engine(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Build the async engine for *database_url*.

    Pool sizing options only apply to server databases; SQLite uses
    SQLAlchemy's defaults unless the caller overrides them.
    """
    options: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if database_url.startswith("postgresql"):
        options.update(pool_size=10, max_overflow=20)
    options.update(kwargs)
    return create_async_engine(database_url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
