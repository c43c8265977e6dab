from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from rm_portal.config import settings
from rm_portal.models import Base

engine: AsyncEngine = create_async_engine(
    settings.database_url_normalized,
    echo=settings.database_echo,
    pool_pre_ping=True,
)


async def create_schema(target: AsyncEngine = engine) -> None:
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
