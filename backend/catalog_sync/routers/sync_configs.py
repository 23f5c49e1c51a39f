import logging

from fastapi import APIRouter, HTTPException

from catalog_sync.models.sync_config import SyncConfig
from catalog_sync.schemas.sync_config import SyncConfigRequest, SyncConfigUpdate
from catalog_sync.services import config_store

logger = logging.getLogger(__name__)

router = APIRouter()


def _mask_secret(secret: str | None) -> str | None:
    """Mask a password, showing only the first 2 and last 2 characters."""
    if not secret:
        return None
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]


def _serialize(config: SyncConfig, reveal_credentials: bool = False) -> dict:
    credentials = dict(config.credentials or {})
    if not reveal_credentials:
        credentials["password"] = _mask_secret(credentials.get("password"))
    return {
        "id": config.id,
        "name": config.name,
        "source_type": config.source_type,
        "credentials": credentials,
        "field_mapping": config.field_mapping or {},
        "custom_attribute_mappings": config.custom_attribute_mappings or [],
        "sync_frequency_hours": config.sync_frequency_hours,
        "is_active": config.is_active,
        "created_at": config.created_at.isoformat() if config.created_at else None,
        "updated_at": config.updated_at.isoformat() if config.updated_at else None,
    }


@router.get("/sync-configs")
async def list_sync_configs() -> dict:
    configs = await config_store.list_configs()
    return {"configs": [_serialize(c) for c in configs]}


@router.get("/sync-configs/{config_id}")
async def get_sync_config(config_id: int, reveal_credentials: bool = False) -> dict:
    """Pass ?reveal_credentials=true to unmask the feed password."""
    config = await config_store.get_config(config_id)
    if not config:
        raise HTTPException(status_code=404, detail="Sync configuration not found")
    return _serialize(config, reveal_credentials=reveal_credentials)


@router.post("/sync-configs", status_code=201)
async def create_sync_config(body: SyncConfigRequest) -> dict:
    config = await config_store.create_config(body)
    return _serialize(config)


@router.put("/sync-configs/{config_id}")
async def update_sync_config(config_id: int, body: SyncConfigUpdate) -> dict:
    config = await config_store.update_config(config_id, body)
    if not config:
        raise HTTPException(status_code=404, detail="Sync configuration not found")
    return _serialize(config)


@router.delete("/sync-configs/{config_id}", status_code=204)
async def delete_sync_config(config_id: int):
    if not await config_store.delete_config(config_id):
        raise HTTPException(status_code=404, detail="Sync configuration not found")
