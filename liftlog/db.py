from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlmodel import Field, SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker

from .settings import get_settings


class KVEntry(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str


def get_engine_url(url: Optional[str] = None) -> str:
    url = url or get_settings().database_url
    if url.startswith("sqlite:///") and not url.startswith("sqlite+aiosqlite:///"):
        # Use aiosqlite for async support
        url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


class KeyValueStore:
    """String key-value substrate for the guest workout store, one row per key."""

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None) -> None:
        self.engine = engine or create_async_engine(get_engine_url(url), echo=False, future=True)
        self._sessions = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False, autoflush=False, autocommit=False
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            yield session

    async def init(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def get(self, key: str) -> Optional[str]:
        async with self.session() as session:
            row = await session.get(KVEntry, key)
            return row.value if row is not None else None

    async def set(self, key: str, value: str) -> None:
        async with self.session() as session:
            await session.merge(KVEntry(key=key, value=value))
            await session.commit()

    async def delete(self, key: str) -> None:
        async with self.session() as session:
            row = await session.get(KVEntry, key)
            if row is not None:
                await session.delete(row)
                await session.commit()
