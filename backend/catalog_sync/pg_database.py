import asyncio
from urllib.parse import quote_plus

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from catalog_sync.config import settings

# Caps concurrent local persistence calls across all runs
DB_SEMAPHORE = asyncio.Semaphore(settings.db_concurrency)


def _build_url() -> str:
    password = quote_plus(settings.postgres_password)
    return (
        f"postgresql+asyncpg://{settings.postgres_user}:{password}"
        f"@{settings.postgres_host}:{settings.postgres_port}/{settings.postgres_db}"
    )


engine = create_async_engine(_build_url(), echo=False, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def init_pg() -> None:
    # Import all models so they are registered with Base.metadata
    from catalog_sync.models import product_tracking, sync_config, sync_log  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
