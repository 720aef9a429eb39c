from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .barcode_resolver import EntityResolver
from .core.config import settings
from .store import EntityStore, SqlEntityStore

engine = create_async_engine(settings.DATABASE_URL, future=True, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return SessionLocal


async def get_session(
    maker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
) -> AsyncGenerator[AsyncSession, None]:
    async with maker() as session:
        yield session


def get_entity_store(maker: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker)) -> EntityStore:
    return SqlEntityStore(maker)


def get_resolver(store: EntityStore = Depends(get_entity_store)) -> EntityResolver:
    return EntityResolver(
        store,
        transient_retries=settings.RESOLVE_TRANSIENT_RETRIES,
        retry_delay=settings.RESOLVE_RETRY_DELAY_S,
    )
