import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update as sa_update
from sqlalchemy.ext.asyncio import async_sessionmaker

from catalog_sync.models.sync_log import SUCCESS_STATUSES, TERMINAL_STATUSES, SyncLog
from catalog_sync.pg_database import DB_SEMAPHORE, AsyncSessionLocal

logger = logging.getLogger(__name__)

_UPDATABLE = {"status", "message", "end_time", "items_processed", "items_succeeded", "items_failed"}


async def create(
    config_id: Optional[int],
    message: str = "",
    status: str = "started",
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> int:
    async with DB_SEMAPHORE, session_factory() as db:
        log = SyncLog(config_id=config_id, status=status, message=message)
        db.add(log)
        await db.commit()
        await db.refresh(log)
        return log.id


async def update(log_id: int, session_factory: async_sessionmaker = AsyncSessionLocal, **fields: Any) -> None:
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Unknown sync log fields: {sorted(unknown)}")
    async with DB_SEMAPHORE, session_factory() as db:
        log = await db.get(SyncLog, log_id)
        if log is None:
            logger.warning("Sync log %s not found for update", log_id)
            return
        for name, value in fields.items():
            if value is not None:
                setattr(log, name, value)
        await db.commit()


async def finish(
    log_id: int,
    status: str,
    message: str,
    processed: int = 0,
    succeeded: int = 0,
    failed: int = 0,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> None:
    """Terminal update for a run."""
    await update(
        log_id,
        session_factory=session_factory,
        status=status,
        message=message,
        end_time=datetime.now(timezone.utc),
        items_processed=processed,
        items_succeeded=succeeded,
        items_failed=failed,
    )


async def get_last_success(
    config_id: int, session_factory: async_sessionmaker = AsyncSessionLocal
) -> Optional[SyncLog]:
    return await _latest(config_id, SUCCESS_STATUSES, session_factory)


async def get_last_failure(
    config_id: int, session_factory: async_sessionmaker = AsyncSessionLocal
) -> Optional[SyncLog]:
    return await _latest(config_id, ("failed",), session_factory)


async def _latest(config_id: int, statuses: tuple[str, ...], session_factory: async_sessionmaker) -> Optional[SyncLog]:
    async with DB_SEMAPHORE, session_factory() as db:
        result = await db.execute(
            select(SyncLog)
            .where(SyncLog.config_id == config_id, SyncLog.status.in_(statuses), SyncLog.end_time.is_not(None))
            .order_by(SyncLog.end_time.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


async def list_for_config(
    config_id: int,
    limit: int = 10,
    offset: int = 0,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> list[SyncLog]:
    async with DB_SEMAPHORE, session_factory() as db:
        result = await db.execute(
            select(SyncLog)
            .where(SyncLog.config_id == config_id)
            .order_by(SyncLog.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


async def list_recent(limit: int = 40, session_factory: async_sessionmaker = AsyncSessionLocal) -> list[SyncLog]:
    async with DB_SEMAPHORE, session_factory() as db:
        result = await db.execute(select(SyncLog).order_by(SyncLog.start_time.desc()).limit(limit))
        return list(result.scalars().all())


async def mark_interrupted(session_factory: async_sessionmaker = AsyncSessionLocal) -> int:
    """Fail any run left without a terminal status by a crash or restart."""
    async with DB_SEMAPHORE, session_factory() as db:
        result = await db.execute(
            sa_update(SyncLog)
            .where(SyncLog.status.not_in(TERMINAL_STATUSES))
            .values(status="failed", message="Interrupted by restart", end_time=datetime.now(timezone.utc))
        )
        await db.commit()
        return result.rowcount or 0
