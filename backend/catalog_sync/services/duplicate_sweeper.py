"""Remove platform products that share a SKU, keeping the most recently updated one."""
import asyncio
import logging
from typing import Any, Optional

from catalog_sync.config import settings
from catalog_sync.errors import TransportError, ValidationError
from catalog_sync.schemas.sync import CleanupResult
from catalog_sync.services import sync_log_store
from catalog_sync.services.direct_executor import delete_product
from catalog_sync.services.field_mapper import normalize_sku
from catalog_sync.services.platform_client import PlatformClient
from catalog_sync.services.platform_queries import PRODUCTS_WITH_SKUS

logger = logging.getLogger(__name__)


def plan_duplicate_deletions(products: list[dict[str, Any]]) -> tuple[int, dict[str, dict[str, Any]]]:
    """Return ``(duplicate_group_count, {entity_id: product})`` of products to delete.

    Products are grouped by normalized variant SKU. Within a group the product
    with the latest ``updatedAt`` survives; a product listed twice in a group
    (several variants with the same SKU) is only counted once.
    """
    groups: dict[str, dict[str, dict[str, Any]]] = {}
    for product in products:
        if not product.get("id"):
            logger.warning("Skipping product without an id in duplicate scan")
            continue
        for sku in _variant_skus(product):
            key = normalize_sku(sku)
            if key:
                groups.setdefault(key, {})[product["id"]] = product

    duplicate_groups = 0
    to_delete: dict[str, dict[str, Any]] = {}
    for members in groups.values():
        if len(members) < 2:
            continue
        duplicate_groups += 1
        ordered = sorted(members.values(), key=lambda p: p.get("updatedAt") or "", reverse=True)
        for product in ordered[1:]:
            to_delete[product["id"]] = product
    return duplicate_groups, to_delete


def _variant_skus(product: dict[str, Any]) -> list[str]:
    edges = (product.get("variants") or {}).get("edges") or []
    return [e["node"]["sku"] for e in edges if (e.get("node") or {}).get("sku")]


class DuplicateSweeper:
    def __init__(
        self,
        client: PlatformClient,
        batch_size: Optional[int] = None,
        pause_seconds: Optional[float] = None,
    ) -> None:
        self._client = client
        self._batch_size = batch_size or settings.cleanup_batch_size
        self._pause = settings.cleanup_batch_pause_seconds if pause_seconds is None else pause_seconds

    async def list_products(self) -> list[dict[str, Any]]:
        products: list[dict[str, Any]] = []
        cursor = None
        while True:
            data = await self._client.request(PRODUCTS_WITH_SKUS, {"cursor": cursor})
            page = data.get("products") or {}
            products.extend(edge["node"] for edge in page.get("edges") or [] if edge.get("node"))
            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage"):
                return products
            cursor = info.get("endCursor")

    async def sweep(self, sync_log_id: Optional[int] = None) -> CleanupResult:
        logger.info("Scanning platform catalog for duplicate SKUs")
        products = await self.list_products()
        duplicate_groups, to_delete = plan_duplicate_deletions(products)
        result = CleanupResult(total_scanned=len(products), duplicate_groups=duplicate_groups)
        logger.info("Found %d duplicate SKU groups, %d products to delete", duplicate_groups, len(to_delete))

        if sync_log_id is not None and to_delete:
            await sync_log_store.update(
                sync_log_id, message=f"Removing {len(to_delete)} duplicate products from {duplicate_groups} SKU groups"
            )

        ids = list(to_delete)
        for start in range(0, len(ids), self._batch_size):
            batch = ids[start:start + self._batch_size]
            outcomes = await asyncio.gather(*[self._delete(entity_id, to_delete[entity_id]) for entity_id in batch])
            result.deleted += sum(1 for ok in outcomes if ok)
            result.errors += sum(1 for ok in outcomes if not ok)
            if start + self._batch_size < len(ids):
                await asyncio.sleep(self._pause)

        logger.info(
            "Duplicate cleanup done: scanned=%d groups=%d deleted=%d errors=%d",
            result.total_scanned, result.duplicate_groups, result.deleted, result.errors,
        )
        return result

    async def _delete(self, entity_id: str, product: dict[str, Any]) -> bool:
        try:
            await delete_product(self._client, entity_id)
        except (ValidationError, TransportError) as e:
            logger.error("Failed to delete duplicate %s (%s): %s", product.get("title"), entity_id, e)
            return False
        logger.info("Deleted duplicate product %s (%s)", product.get("title"), entity_id)
        return True
