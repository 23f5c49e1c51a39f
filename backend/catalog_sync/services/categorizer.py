import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Iterable, Optional

from catalog_sync.services.catalog_index import RemoteIdentity, lookup
from catalog_sync.services.field_mapper import MappedEntity, normalize_sku

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateOperation:
    entity: MappedEntity
    entity_id: str
    variant_id: Optional[str]


@dataclass(frozen=True)
class DeleteOperation:
    sku: str
    entity_id: str


@dataclass
class Operations:
    create: list[MappedEntity] = field(default_factory=list)
    update: list[UpdateOperation] = field(default_factory=list)
    delete: list[DeleteOperation] = field(default_factory=list)
    # In the feed, but the remote lookup failed and nothing is tracked for it
    unresolved: list[MappedEntity] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"create={len(self.create)} update={len(self.update)} delete={len(self.delete)}"
            f" unresolved={len(self.unresolved)}"
        )


def categorize(
    entities: Iterable[MappedEntity],
    identities: dict[str, RemoteIdentity],
    tracking: Iterable[Any],
    unresolved: AbstractSet[str] = frozenset(),
) -> Operations:
    """Split a run into create / update / delete.

    The feed is authoritative for membership: a tracked SKU missing from the
    feed is deleted using its recorded remote id, without a fresh lookup.

    ``unresolved`` holds normalized SKUs whose remote lookup failed. Those are
    never created: they update through their tracked ids when known, and are
    otherwise returned in ``Operations.unresolved``.
    """
    operations = Operations()
    feed_keys: set[str] = set()
    tracked = list(tracking)
    tracked_by_key = {(r.sku_key or normalize_sku(r.sku)): r for r in tracked}

    for entity in entities:
        if not entity.sku:
            continue
        key = normalize_sku(entity.sku)
        if key in feed_keys:
            logger.warning("Duplicate SKU %s in feed, keeping first occurrence", entity.sku)
            continue
        feed_keys.add(key)

        identity = lookup(identities, entity.sku)
        if identity:
            operations.update.append(
                UpdateOperation(entity=entity, entity_id=identity.entity_id, variant_id=identity.variant_id)
            )
        elif key in unresolved:
            record = tracked_by_key.get(key)
            if record is not None and record.remote_entity_id:
                logger.warning("Lookup failed for %s, updating tracked product %s", entity.sku, record.remote_entity_id)
                operations.update.append(
                    UpdateOperation(
                        entity=entity, entity_id=record.remote_entity_id, variant_id=record.remote_variant_id
                    )
                )
            else:
                operations.unresolved.append(entity)
        else:
            operations.create.append(entity)

    for record in tracked:
        key = record.sku_key or normalize_sku(record.sku)
        if key in feed_keys or not record.remote_entity_id:
            continue
        operations.delete.append(DeleteOperation(sku=record.sku, entity_id=record.remote_entity_id))

    logger.info("Product operations: %s", operations.summary())
    return operations
