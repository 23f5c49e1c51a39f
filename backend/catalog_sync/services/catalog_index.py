import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from catalog_sync.config import settings
from catalog_sync.errors import TransportError
from catalog_sync.services.field_mapper import normalize_sku
from catalog_sync.services.platform_client import PlatformClient
from catalog_sync.services.platform_queries import PRODUCT_VARIANTS_BY_SKU, SHOP_LOCATIONS

logger = logging.getLogger(__name__)

_BATCH_RESULT_LIMIT = 250
_FALLBACK_RESULT_LIMIT = 10


@dataclass(frozen=True)
class RemoteIdentity:
    entity_id: str
    variant_id: Optional[str]
    title: Optional[str] = None
    sku: Optional[str] = None


def sku_filter(skus: Iterable[str]) -> str:
    """OR-combined exact-match search filter, e.g. ``sku:"A" OR sku:"B"``."""
    terms = []
    for sku in skus:
        escaped = sku.replace("\\", "\\\\").replace('"', '\\"')
        terms.append(f'sku:"{escaped}"')
    return " OR ".join(terms)


class CatalogIndexResolver:
    """Looks up which SKUs already exist on the platform.

    Also owns the process-lifetime cache of the default inventory location.
    That value only changes when the shop is reconfigured, so it is resolved
    once and reused until the process restarts.
    """

    _default_location_id: Optional[str] = None

    def __init__(self, client: PlatformClient, batch_size: Optional[int] = None) -> None:
        self._client = client
        self._batch_size = batch_size or settings.sku_lookup_batch_size
        # Normalized SKUs whose lookup failed in the last resolve(); not known to be absent
        self.failed: set[str] = set()

    async def resolve(self, skus: Iterable[str]) -> dict[str, RemoteIdentity]:
        unique = list(dict.fromkeys(s.strip() for s in skus if s and s.strip()))
        found: dict[str, RemoteIdentity] = {}
        self.failed = set()
        if not unique:
            return found

        logger.info("Looking up %d SKUs on the platform", len(unique))
        for start in range(0, len(unique), self._batch_size):
            batch = unique[start:start + self._batch_size]
            try:
                identities = await self._search(sku_filter(batch), _BATCH_RESULT_LIMIT)
            except TransportError as e:
                logger.error("SKU batch lookup failed, falling back to single lookups: %s", e)
                identities = []
            for identity in identities:
                _index(found, identity)

            for sku in batch:
                if sku in found or normalize_sku(sku) in found:
                    continue
                try:
                    identity = await self._lookup_one(sku)
                except TransportError as e:
                    logger.error("SKU lookup failed for %s: %s", sku, e)
                    self.failed.add(normalize_sku(sku))
                    continue
                if identity:
                    _index(found, identity)
                    found.setdefault(sku, identity)

        logger.info("Found %d existing products by SKU", len({i.entity_id for i in found.values()}))
        if self.failed:
            logger.warning("Could not look up %d SKUs, they will not be created this run", len(self.failed))
        return found

    async def _search(self, query: str, first: int) -> list[RemoteIdentity]:
        data = await self._client.request(PRODUCT_VARIANTS_BY_SKU, {"query": query, "first": first})
        identities = []
        for edge in (data.get("productVariants") or {}).get("edges", []):
            node = edge.get("node") or {}
            product = node.get("product") or {}
            if not node.get("sku") or not product.get("id"):
                continue
            identities.append(
                RemoteIdentity(
                    entity_id=product["id"],
                    variant_id=node["id"],
                    title=product.get("title"),
                    sku=node["sku"],
                )
            )
        return identities

    async def _lookup_one(self, sku: str) -> Optional[RemoteIdentity]:
        candidates = await self._search(sku_filter([sku]), _FALLBACK_RESULT_LIMIT)

        for identity in candidates:
            if identity.sku == sku:
                return identity
        key = normalize_sku(sku)
        for identity in candidates:
            if normalize_sku(identity.sku) == key:
                logger.warning("Case-insensitive SKU match: %s -> %s", sku, identity.sku)
                return identity
        return None

    async def default_location_id(self) -> Optional[str]:
        if CatalogIndexResolver._default_location_id:
            return CatalogIndexResolver._default_location_id

        try:
            data = await self._client.request(SHOP_LOCATIONS)
        except TransportError as e:
            logger.warning("Could not fetch shop locations: %s", e)
            return None

        nodes = [edge.get("node") or {} for edge in (data.get("locations") or {}).get("edges", [])]
        preferred = next(
            (n for n in nodes if n.get("isActive") and n.get("fulfillsOnlineOrders")),
            nodes[0] if nodes else None,
        )
        if not preferred:
            return None
        CatalogIndexResolver._default_location_id = preferred["id"]
        logger.info("Using inventory location %s (%s)", preferred.get("name"), preferred["id"])
        return preferred["id"]


def _index(found: dict[str, RemoteIdentity], identity: RemoteIdentity) -> None:
    found.setdefault(identity.sku, identity)
    found.setdefault(normalize_sku(identity.sku), identity)


def lookup(identities: dict[str, RemoteIdentity], sku: str) -> Optional[RemoteIdentity]:
    """Exact key first, then the normalized key."""
    return identities.get(sku) or identities.get(normalize_sku(sku))
