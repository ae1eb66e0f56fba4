from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from mailroom.core.config import settings
from mailroom.models.base import Base

engine: AsyncEngine = create_async_engine(settings.database_url, echo=settings.sql_echo)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session


async def init_models(bind: AsyncEngine | None = None) -> None:
    # registers the mapped tables on Base.metadata
    import mailroom.models.access_code  # noqa: F401
    import mailroom.models.recipient  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
