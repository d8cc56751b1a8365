from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from cardshop.core.config import settings
from cardshop.models import (  # noqa: F401
    box,
    card,
    card_set,
    inventory,
    opening,
    pack,
    stock,
    transaction,
    user,
)

engine = create_async_engine(settings.db_url, pool_pre_ping=True)

async_session_factory = async_sessionmaker(
    engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Create all tables. Schema migrations are managed outside this service."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
