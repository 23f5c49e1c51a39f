"""One reconciliation run for a sync configuration.

fetch feed -> map -> resolve + categorize -> direct or bulk per set -> deletes
-> duplicate sweep -> terminal sync log update.
"""
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.config import settings
from catalog_sync.errors import (
    BulkJobError,
    ConfigurationError,
    SourceFetchError,
    SyncError,
    TransportError,
)
from catalog_sync.schemas.sync import CleanupResult, SyncOptions, SyncResult
from catalog_sync.services import config_store, feed_fetcher, sync_log_store, tracking_store
from catalog_sync.services.bulk_jobs import BulkJob, BulkJobManager, BulkJobState, result_payload
from catalog_sync.services.catalog_index import CatalogIndexResolver
from catalog_sync.services.categorizer import UpdateOperation, categorize
from catalog_sync.services.direct_executor import DirectExecutor, RunStats
from catalog_sync.services.duplicate_sweeper import DuplicateSweeper
from catalog_sync.services.execution_strategy import ExecutionPath, choose_path
from catalog_sync.services.field_mapper import MappedEntity, map_record
from catalog_sync.services.platform_client import PlatformClient
from catalog_sync.services.product_input import build_product_set_input, first_variant_id

logger = logging.getLogger(__name__)


async def run_sync(config_id: int, options: Optional[SyncOptions], client: PlatformClient) -> SyncResult:
    """Run one sync. Raises ConfigurationError / SourceFetchError when the run cannot start."""
    options = options or SyncOptions(limit=settings.default_sync_limit)

    config = await config_store.get_config(config_id)
    if config is None:
        raise ConfigurationError(f"Sync configuration {config_id} not found")

    log_id = await sync_log_store.create(config_id, message=f"Starting sync for {config.name}")
    result = SyncResult(sync_log_id=log_id)
    logger.info("Sync %s (config %d) started, log %d", config.name, config_id, log_id)

    try:
        records = await _load_feed(config)
        result.original_product_count = len(records)
        if options.limited:
            records = records[:options.limit]
            logger.info("Limited sync: %d of %d records", len(records), result.original_product_count)

        await sync_log_store.update(log_id, status="processing", message=f"Processing {len(records)} products")

        entities: list[MappedEntity] = []
        for record in records:
            entity = map_record(record, config)
            if entity.sku:
                entities.append(entity)
            else:
                result.skipped += 1
        if result.skipped:
            logger.warning("Skipped %d feed records without a SKU", result.skipped)
        result.product_count = len(entities)

        resolver = CatalogIndexResolver(client)
        identities = await resolver.resolve(e.sku for e in entities)
        tracking = await tracking_store.list_by_config(config_id)
        operations = categorize(entities, identities, tracking, unresolved=resolver.failed)
        if options.limited and operations.delete:
            # A truncated feed says nothing about the SKUs past the limit
            logger.info("Limited sync: not deleting %d tracked products", len(operations.delete))
            operations.delete = []

        stats = RunStats()
        for entity in operations.unresolved:
            stats.record_failure(entity.sku, "lookup", TransportError("SKU lookup failed, existence unknown"))
        executor = DirectExecutor(client, config_id, resolver)

        create_path = choose_path(len(operations.create), options.use_bulk)
        if create_path is ExecutionPath.bulk:
            location_id = None
            if any(e.variant_data.get("inventoryQuantity") is not None for e in operations.create):
                location_id = await resolver.default_location_id()
            inputs = [build_product_set_input(e, location_id=location_id) for e in operations.create]
            await _run_bulk(client, config_id, log_id, "create", operations.create, inputs, stats)
        else:
            await executor.create_all(operations.create, stats)

        update_path = choose_path(len(operations.update), options.use_bulk)
        if update_path is ExecutionPath.bulk:
            inputs = [build_product_set_input(op.entity, op.entity_id, op.variant_id) for op in operations.update]
            await _run_bulk(client, config_id, log_id, "update", operations.update, inputs, stats)
        else:
            await executor.update_all(operations.update, stats)

        await executor.delete_all(operations.delete, stats)

        result.created, result.updated, result.deleted, result.failed = (
            stats.created, stats.updated, stats.deleted, stats.failed,
        )
        result.duplicates_removed = await _sweep_duplicates(client, log_id)

    except (ConfigurationError, SourceFetchError) as e:
        logger.error("Sync %s (config %d) failed: %s", config.name, config_id, e)
        result.message = str(e)
        await sync_log_store.finish(log_id, "failed", str(e), processed=result.product_count)
        raise
    except Exception as e:
        logger.exception("Sync %s (config %d) failed unexpectedly", config.name, config_id)
        await sync_log_store.finish(log_id, "failed", f"Unexpected error: {e}", processed=result.product_count)
        raise

    status = "completed_with_errors" if result.failed else "completed"
    result.message = (
        f"Synced {result.product_count} products: created {result.created}, updated {result.updated}, "
        f"deleted {result.deleted}, failed {result.failed}, skipped {result.skipped}"
    )
    if result.duplicates_removed:
        result.message += f", removed {result.duplicates_removed} duplicates"
    await sync_log_store.finish(
        log_id,
        status,
        result.message,
        processed=result.product_count,
        succeeded=result.succeeded,
        failed=result.failed,
    )
    logger.info("Sync %s (config %d) %s: %s", config.name, config_id, status, result.message)
    return result


async def cleanup_duplicates(client: PlatformClient, sync_log_id: Optional[int] = None) -> CleanupResult:
    return await DuplicateSweeper(client).sweep(sync_log_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _load_feed(config: Any) -> list[dict[str, Any]]:
    if config.source_type != "ftp":
        raise ConfigurationError(f"Unsupported source type: {config.source_type}")
    credentials = config.credentials or {}
    if not credentials.get("file_path"):
        raise ConfigurationError(f"Sync configuration {config.id} has no feed file path")

    document = await feed_fetcher.fetch(credentials["file_path"], credentials)
    records = feed_fetcher.extract_data_path(document, credentials.get("data_path"))
    logger.info("Feed for config %d has %d records", config.id, len(records))
    return records


async def _run_bulk(
    client: PlatformClient,
    config_id: int,
    log_id: int,
    operation: str,
    items: list[Any],
    inputs: list[dict[str, Any]],
    stats: RunStats,
) -> None:
    async def on_state(state: BulkJobState, job: Optional[BulkJob]) -> None:
        if state is BulkJobState.SUBMITTED and job is not None:
            await sync_log_store.update(
                log_id, status="bulk_operation_started", message=f"Bulk {operation} job {job.id} submitted"
            )

    manager = BulkJobManager(client, on_state=on_state)
    batch_size = settings.bulk_max_batch_size
    for start in range(0, len(inputs), batch_size):
        batch_items = items[start:start + batch_size]
        batch_inputs = inputs[start:start + batch_size]
        try:
            outcome = await manager.run(batch_inputs, operation)
        except (BulkJobError, TransportError) as e:
            logger.error("Bulk %s batch of %d failed: %s", operation, len(batch_inputs), e)
            for item in batch_items:
                stats.record_failure(_sku_of(item), operation, e)
            continue

        if operation == "create":
            stats.created += outcome.succeeded
        else:
            stats.updated += outcome.succeeded
        stats.failed += outcome.failed
        if outcome.completed:
            await _track_bulk_results(config_id, batch_items, outcome.results)


async def _track_bulk_results(config_id: int, items: list[Any], results: list[dict[str, Any]]) -> None:
    for position, line in enumerate(results):
        index = line.get("__lineNumber", position)
        if not isinstance(index, int) or not 0 <= index < len(items):
            continue
        payload = result_payload(line)
        product = payload.get("product") or {}
        if payload.get("userErrors") or not product.get("id"):
            continue

        item = items[index]
        entity = item.entity if isinstance(item, UpdateOperation) else item
        variant_id = first_variant_id(product) or (item.variant_id if isinstance(item, UpdateOperation) else None)
        try:
            await tracking_store.upsert(config_id, entity.sku, product["id"], variant_id, entity.source)
        except SQLAlchemyError as e:
            logger.error("Could not record tracking for %s: %s", entity.sku, e)


async def _sweep_duplicates(client: PlatformClient, log_id: int) -> Optional[int]:
    await sync_log_store.update(log_id, status="cleaning_duplicates", message="Checking for duplicate products")
    try:
        cleanup = await cleanup_duplicates(client, log_id)
    except SyncError as e:
        logger.error("Duplicate cleanup failed, continuing: %s", e)
        return None
    except Exception:
        logger.exception("Duplicate cleanup failed unexpectedly, continuing")
        return None
    return cleanup.deleted


def _sku_of(item: Any) -> Optional[str]:
    entity = item.entity if isinstance(item, UpdateOperation) else item
    return entity.sku
