import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catalog_sync.config import settings
from catalog_sync.pg_database import init_pg
from catalog_sync.routers.sync import router as sync_router
from catalog_sync.routers.sync_configs import router as sync_configs_router
from catalog_sync.services import sync_log_store
from catalog_sync.services.platform_client import PlatformClient
from catalog_sync.services.run_coordinator import SyncCoordinator

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_pg()
    # Runs left without a terminal status by a crash/restart become retry candidates
    interrupted = await sync_log_store.mark_interrupted()
    if interrupted:
        logger.warning("Marked %d interrupted sync runs as failed", interrupted)

    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    logger.info("Shared HTTP client initialised")
    app.state.coordinator = SyncCoordinator(PlatformClient(app.state.http_client))

    scheduler = AsyncIOScheduler()
    if settings.scheduler_enabled:
        scheduler.add_job(
            app.state.coordinator.check_and_schedule,
            "interval",
            minutes=settings.scheduler_check_minutes,
            next_run_time=datetime.now(timezone.utc) + timedelta(seconds=30),
        )
        scheduler.start()
        logger.info("Sync scheduler started, checking every %d minutes", settings.scheduler_check_minutes)
        await app.state.coordinator.retry_failed_syncs()

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await app.state.http_client.aclose()
    logger.info("Shared HTTP client closed")


app = FastAPI(title="Catalog Sync API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_configs_router, prefix="/api")
app.include_router(sync_router, prefix="/api")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
