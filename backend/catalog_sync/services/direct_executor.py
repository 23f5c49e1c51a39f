import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from catalog_sync.errors import TransportError, ValidationError
from catalog_sync.services import tracking_store
from catalog_sync.services.catalog_index import CatalogIndexResolver
from catalog_sync.services.categorizer import DeleteOperation, UpdateOperation
from catalog_sync.services.field_mapper import MappedEntity
from catalog_sync.services.platform_client import PlatformClient, raise_for_user_errors
from catalog_sync.services.platform_queries import PRODUCT_DELETE, PRODUCT_SET
from catalog_sync.services.product_input import build_product_set_input, first_variant_id

logger = logging.getLogger(__name__)

_ALREADY_GONE_MARKERS = ("does not exist", "not found")


@dataclass
class RunStats:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def record_failure(self, sku: Optional[str], operation: str, error: Exception | str) -> None:
        self.failed += 1
        self.errors.append({"sku": sku, "operation": operation, "error": str(error)})


def is_already_gone(error: ValidationError) -> bool:
    messages = " ".join(str(e.get("message", "")) for e in error.user_errors).lower() or str(error).lower()
    return any(marker in messages for marker in _ALREADY_GONE_MARKERS)


class DirectExecutor:
    """Per-item productSet / productDelete calls.

    Concurrency is bounded by the platform client's API semaphore. A rejected
    item is recorded and the remaining items carry on.
    """

    def __init__(
        self,
        client: PlatformClient,
        config_id: int,
        resolver: Optional[CatalogIndexResolver] = None,
    ) -> None:
        self._client = client
        self._config_id = config_id
        self._resolver = resolver

    async def create_all(self, entities: list[MappedEntity], stats: RunStats) -> None:
        location_id = None
        if self._resolver and any(e.variant_data.get("inventoryQuantity") is not None for e in entities):
            location_id = await self._resolver.default_location_id()
        await asyncio.gather(*[self._create_one(e, stats, location_id) for e in entities])

    async def update_all(self, operations: list[UpdateOperation], stats: RunStats) -> None:
        await asyncio.gather(*[self._update_one(op, stats) for op in operations])

    async def delete_all(self, operations: list[DeleteOperation], stats: RunStats) -> None:
        await asyncio.gather(*[self._delete_one(op, stats) for op in operations])

    async def _create_one(self, entity: MappedEntity, stats: RunStats, location_id: Optional[str]) -> None:
        try:
            product = await self._product_set(build_product_set_input(entity, location_id=location_id), "create")
        except (ValidationError, TransportError) as e:
            logger.error("Failed to create product %s: %s", entity.sku, e)
            stats.record_failure(entity.sku, "create", e)
            return

        stats.created += 1
        logger.info("Created product %s (%s)", entity.sku, product.get("id"))
        await self._track(entity.sku, product.get("id"), first_variant_id(product), entity.source)

    async def _update_one(self, op: UpdateOperation, stats: RunStats) -> None:
        product_input = build_product_set_input(op.entity, entity_id=op.entity_id, variant_id=op.variant_id)
        try:
            product = await self._product_set(product_input, "update")
        except (ValidationError, TransportError) as e:
            logger.error("Failed to update product %s: %s", op.entity.sku, e)
            stats.record_failure(op.entity.sku, "update", e)
            return

        stats.updated += 1
        logger.info("Updated product %s (%s)", op.entity.sku, op.entity_id)
        await self._track(
            op.entity.sku,
            product.get("id") or op.entity_id,
            first_variant_id(product) or op.variant_id,
            op.entity.source,
        )

    async def _delete_one(self, op: DeleteOperation, stats: RunStats) -> None:
        try:
            await delete_product(self._client, op.entity_id)
        except (ValidationError, TransportError) as e:
            logger.error("Failed to delete product %s (%s): %s", op.sku, op.entity_id, e)
            stats.record_failure(op.sku, "delete", e)
            return

        stats.deleted += 1
        logger.info("Deleted product %s (%s)", op.sku, op.entity_id)
        try:
            await tracking_store.remove(self._config_id, op.sku)
        except SQLAlchemyError as e:
            logger.error("Could not remove tracking for %s: %s", op.sku, e)

    async def _product_set(self, product_input: dict[str, Any], operation: str) -> dict[str, Any]:
        data = await self._client.request(PRODUCT_SET, {"input": product_input, "synchronous": True})
        payload = data.get("productSet") or {}
        raise_for_user_errors(payload, f"product {operation}")
        product = payload.get("product")
        if not product or not product.get("id"):
            raise ValidationError(f"product {operation} returned no product")
        return product

    async def _track(
        self, sku: str, entity_id: Optional[str], variant_id: Optional[str], source: dict[str, Any]
    ) -> None:
        if not entity_id:
            return
        try:
            await tracking_store.upsert(self._config_id, sku, entity_id, variant_id, source)
        except SQLAlchemyError as e:
            logger.error("Could not record tracking for %s: %s", sku, e)


async def delete_product(client: PlatformClient, entity_id: str) -> None:
    """Delete one product. A product that is already gone counts as deleted."""
    data = await client.request(PRODUCT_DELETE, {"input": {"id": entity_id}})
    try:
        raise_for_user_errors(data.get("productDelete"), "product delete")
    except ValidationError as e:
        if is_already_gone(e):
            logger.info("Product already deleted: %s", entity_id)
            return
        raise
