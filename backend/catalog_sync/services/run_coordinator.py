import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from catalog_sync.config import settings
from catalog_sync.errors import SyncError
from catalog_sync.schemas.sync import SyncOptions, SyncResult
from catalog_sync.services import config_store, product_sync, sync_log_store
from catalog_sync.services.platform_client import PlatformClient

logger = logging.getLogger(__name__)


class InFlightRegistry:
    """Config ids with a run in progress. ``try_acquire`` is an atomic test-and-set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: set[int] = set()

    def try_acquire(self, config_id: int) -> bool:
        with self._lock:
            if config_id in self._ids:
                return False
            self._ids.add(config_id)
            return True

    def release(self, config_id: int) -> None:
        with self._lock:
            self._ids.discard(config_id)

    def __contains__(self, config_id: object) -> bool:
        with self._lock:
            return config_id in self._ids

    def snapshot(self) -> list[int]:
        with self._lock:
            return sorted(self._ids)


class SyncCoordinator:
    def __init__(self, client: PlatformClient, registry: Optional[InFlightRegistry] = None) -> None:
        self.client = client
        self.registry = registry or InFlightRegistry()
        self._tasks: set[asyncio.Task] = set()

    async def run(self, config_id: int, options: Optional[SyncOptions] = None) -> Optional[SyncResult]:
        """Run a sync inline. Returns None when a run for the config is already in flight."""
        if not self.registry.try_acquire(config_id):
            logger.info("Sync for config %d already in progress, skipping", config_id)
            return None
        return await self._run_acquired(config_id, options)

    def trigger(self, config_id: int, options: Optional[SyncOptions] = None) -> bool:
        """Start a sync in the background. False when one is already in flight."""
        if not self.registry.try_acquire(config_id):
            logger.info("Sync for config %d already in progress, skipping", config_id)
            return False
        task = asyncio.create_task(self._run_logged(config_id, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run_acquired(self, config_id: int, options: Optional[SyncOptions]) -> SyncResult:
        try:
            return await product_sync.run_sync(config_id, options, self.client)
        finally:
            self.registry.release(config_id)

    async def _run_logged(self, config_id: int, options: Optional[SyncOptions]) -> None:
        try:
            await self._run_acquired(config_id, options)
        except SyncError as e:
            logger.error("Background sync for config %d failed: %s", config_id, e)
        except Exception:
            logger.exception("Background sync for config %d failed", config_id)

    async def retry_failed_syncs(self) -> list[int]:
        """Re-run configs whose latest failure is newer than their latest success."""
        retried = []
        for config in await config_store.list_configs():
            if not config.is_active:
                continue
            last_failure = await sync_log_store.get_last_failure(config.id)
            if last_failure is None:
                continue
            last_success = await sync_log_store.get_last_success(config.id)
            if last_success is not None and _aware(last_success.end_time) >= _aware(last_failure.end_time):
                continue
            logger.info("Retrying failed sync for config %d (%s)", config.id, config.name)
            if self.trigger(config.id):
                retried.append(config.id)
        return retried

    async def check_and_schedule(self) -> list[int]:
        """Start a run for every active config that is due."""
        started = []
        now = datetime.now(timezone.utc)
        for config in await config_store.list_configs():
            if not config.is_active:
                logger.debug("Config %d is inactive, not scheduling", config.id)
                continue
            if config.id in self.registry:
                continue
            frequency = timedelta(hours=config.sync_frequency_hours or settings.default_sync_frequency_hours)
            last_success = await sync_log_store.get_last_success(config.id)
            if last_success is not None and now - _aware(last_success.end_time) < frequency:
                continue

            reason = "never synced" if last_success is None else f"last success {last_success.end_time.isoformat()}"
            logger.info("Scheduling sync for config %d (%s): %s", config.id, config.name, reason)
            if self.trigger(config.id):
                started.append(config.id)
        return started

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
