import json
from typing import Any, Optional

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.models.product_tracking import ProductTracking
from catalog_sync.pg_database import DB_SEMAPHORE, AsyncSessionLocal
from catalog_sync.services.field_mapper import normalize_sku

_TRACKING_UPSERT = (
    "INSERT INTO product_tracking"
    " (config_id, sku, sku_key, remote_entity_id, remote_variant_id, feed_payload, last_synced_at, updated_at)"
    " VALUES (:config_id, :sku, :sku_key, :remote_entity_id, :remote_variant_id,"
    " CAST(:feed_payload AS JSON), NOW(), NOW())"
    " ON CONFLICT (config_id, sku_key) DO UPDATE SET"
    " sku = EXCLUDED.sku,"
    " remote_entity_id = EXCLUDED.remote_entity_id,"
    " remote_variant_id = COALESCE(EXCLUDED.remote_variant_id, product_tracking.remote_variant_id),"
    " feed_payload = EXCLUDED.feed_payload,"
    " last_synced_at = NOW(),"
    " updated_at = NOW()"
)


async def upsert(
    config_id: int,
    sku: str,
    remote_entity_id: str,
    remote_variant_id: Optional[str],
    feed_record: Optional[dict[str, Any]],
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> None:
    async with DB_SEMAPHORE, session_factory() as db:
        await db.execute(
            text(_TRACKING_UPSERT),
            {
                "config_id": config_id,
                "sku": sku,
                "sku_key": normalize_sku(sku),
                "remote_entity_id": remote_entity_id,
                "remote_variant_id": remote_variant_id,
                "feed_payload": json.dumps(feed_record, default=str) if feed_record is not None else None,
            },
        )
        await db.commit()


async def remove(config_id: int, sku: str, session_factory: async_sessionmaker = AsyncSessionLocal) -> None:
    async with DB_SEMAPHORE, session_factory() as db:
        await db.execute(
            text("DELETE FROM product_tracking WHERE config_id = :config_id AND sku_key = :sku_key"),
            {"config_id": config_id, "sku_key": normalize_sku(sku)},
        )
        await db.commit()


async def list_by_config(
    config_id: int, session_factory: async_sessionmaker = AsyncSessionLocal
) -> list[ProductTracking]:
    async with DB_SEMAPHORE, session_factory() as db:
        result = await db.execute(
            select(ProductTracking).where(ProductTracking.config_id == config_id).order_by(ProductTracking.id)
        )
        return list(result.scalars().all())
