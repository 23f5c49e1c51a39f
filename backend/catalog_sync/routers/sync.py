import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from catalog_sync.errors import SyncError
from catalog_sync.models.sync_log import SyncLog
from catalog_sync.schemas.sync import SyncOptions, SyncTriggerResponse
from catalog_sync.services import config_store, product_sync, sync_log_store
from catalog_sync.services.run_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)
router = APIRouter()


def _coordinator(request: Request) -> SyncCoordinator:
    return request.app.state.coordinator


def _serialize_log(log: SyncLog) -> dict:
    return {
        "id": log.id,
        "config_id": log.config_id,
        "status": log.status,
        "message": log.message,
        "start_time": log.start_time.isoformat() if log.start_time else None,
        "end_time": log.end_time.isoformat() if log.end_time else None,
        "items_processed": log.items_processed,
        "items_succeeded": log.items_succeeded,
        "items_failed": log.items_failed,
    }


async def _run_cleanup(request: Request, log_id: int) -> None:
    try:
        cleanup = await product_sync.cleanup_duplicates(_coordinator(request).client, log_id)
    except SyncError as e:
        logger.error("Duplicate cleanup failed: %s", e)
        await sync_log_store.finish(log_id, "failed", str(e))
        return
    await sync_log_store.finish(
        log_id,
        "completed_with_errors" if cleanup.errors else "completed",
        f"Scanned {cleanup.total_scanned} products, {cleanup.duplicate_groups} duplicate groups, "
        f"deleted {cleanup.deleted}, errors {cleanup.errors}",
        processed=cleanup.deleted + cleanup.errors,
        succeeded=cleanup.deleted,
        failed=cleanup.errors,
    )


@router.post("/sync/cleanup-duplicates", status_code=202)
async def cleanup_duplicates(request: Request, background_tasks: BackgroundTasks) -> dict:
    log_id = await sync_log_store.create(None, message="Duplicate cleanup requested", status="cleaning_duplicates")
    background_tasks.add_task(_run_cleanup, request, log_id)
    return {"status": "started", "log_id": log_id}


@router.post("/sync/{config_id}", status_code=202, response_model=SyncTriggerResponse)
async def trigger_sync(config_id: int, request: Request, options: SyncOptions | None = None) -> SyncTriggerResponse:
    config = await config_store.get_config(config_id)
    if not config:
        raise HTTPException(status_code=404, detail="Sync configuration not found")
    if not _coordinator(request).trigger(config_id, options):
        raise HTTPException(status_code=409, detail="A sync for this configuration is already running")
    logger.info("Manual sync started for config %d", config_id)
    return SyncTriggerResponse(status="started", config_id=config_id)


@router.get("/sync/status")
async def sync_status(request: Request) -> dict:
    logs = await sync_log_store.list_recent()
    return {
        "running": _coordinator(request).registry.snapshot(),
        "logs": [_serialize_log(log) for log in logs],
    }


@router.get("/sync/{config_id}/logs")
async def sync_logs(config_id: int, limit: int = 10, offset: int = 0) -> dict:
    logs = await sync_log_store.list_for_config(config_id, limit=limit, offset=offset)
    return {"config_id": config_id, "logs": [_serialize_log(log) for log in logs]}
