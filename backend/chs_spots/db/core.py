from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..settings import to_async_url

Base = declarative_base()


def build_engine(url: str) -> AsyncEngine:
    """Accepts sync or async style urls (``sqlite:///`` becomes ``sqlite+aiosqlite:///``)."""
    return create_async_engine(
        to_async_url(url),
        future=True,
        echo=False,
        pool_pre_ping=True,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    from . import models  # noqa: F401 - ensure models registered

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
