import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.models.sync_config import SyncConfig
from catalog_sync.pg_database import DB_SEMAPHORE, AsyncSessionLocal
from catalog_sync.schemas.sync_config import SyncConfigRequest, SyncConfigUpdate

logger = logging.getLogger(__name__)


async def list_configs(session_factory: async_sessionmaker = AsyncSessionLocal) -> list[SyncConfig]:
    async with DB_SEMAPHORE, session_factory() as db:
        result = await db.execute(select(SyncConfig).order_by(SyncConfig.id))
        return list(result.scalars().all())


async def get_config(config_id: int, session_factory: async_sessionmaker = AsyncSessionLocal) -> Optional[SyncConfig]:
    async with DB_SEMAPHORE, session_factory() as db:
        return await db.get(SyncConfig, config_id)


async def create_config(
    body: SyncConfigRequest, session_factory: async_sessionmaker = AsyncSessionLocal
) -> SyncConfig:
    config = SyncConfig(
        name=body.name,
        source_type=body.source_type.value,
        credentials=body.credentials.model_dump(),
        field_mapping=dict(body.field_mapping),
        custom_attribute_mappings=[m.model_dump(mode="json") for m in body.custom_attribute_mappings],
        sync_frequency_hours=body.sync_frequency_hours,
        is_active=body.is_active,
    )
    async with DB_SEMAPHORE, session_factory() as db:
        db.add(config)
        await db.commit()
        await db.refresh(config)
    logger.info("Sync config created: %s (id=%d)", config.name, config.id)
    return config


async def update_config(
    config_id: int, body: SyncConfigUpdate, session_factory: async_sessionmaker = AsyncSessionLocal
) -> Optional[SyncConfig]:
    async with DB_SEMAPHORE, session_factory() as db:
        config = await db.get(SyncConfig, config_id)
        if config is None:
            return None

        changes = body.model_dump(exclude_unset=True, mode="json")
        if changes.get("credentials") is not None:
            credentials = changes["credentials"]
            # An omitted password keeps the stored one
            if not credentials.get("password"):
                credentials["password"] = (config.credentials or {}).get("password")
        for name, value in changes.items():
            if value is not None:
                setattr(config, name, value)
        await db.commit()
        await db.refresh(config)
    logger.info("Sync config updated: %s (id=%d)", config.name, config.id)
    return config


async def delete_config(config_id: int, session_factory: async_sessionmaker = AsyncSessionLocal) -> bool:
    async with DB_SEMAPHORE, session_factory() as db:
        config = await db.get(SyncConfig, config_id)
        if config is None:
            return False
        await db.delete(config)
        await db.commit()
    logger.info("Sync config deleted: id=%d", config_id)
    return True
