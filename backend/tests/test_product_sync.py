from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from catalog_sync.errors import BulkJobError, BulkJobTimeoutError, ConfigurationError, SourceFetchError, TransportError
from catalog_sync.schemas.sync import SyncOptions
from catalog_sync.services.bulk_jobs import BulkOutcome
from catalog_sync.services.platform_queries import (
    PRODUCT_DELETE,
    PRODUCT_SET,
    PRODUCT_VARIANTS_BY_SKU,
    PRODUCTS_WITH_SKUS,
)
from catalog_sync.services.product_sync import run_sync

_SERVICES = "catalog_sync.services"


def _config():
    return SimpleNamespace(
        id=1,
        name="Main feed",
        source_type="ftp",
        credentials={"host": "ftp.test", "user": "feed", "password": "secret", "file_path": "/feed.json", "data_path": "data.products"},
        field_mapping={"title": "name", "variant.price": "price"},
        custom_attribute_mappings=[],
        sync_frequency_hours=24,
        is_active=True,
    )


def _tracked(sku, pid):
    return SimpleNamespace(
        sku=sku, sku_key=sku.lower(), remote_entity_id=f"gid://Product/{pid}", remote_variant_id=f"gid://Variant/{pid}"
    )


def _platform(created_ids, existing=None, deleted=None, lookup_error=None):
    existing = existing or {}

    async def request(query, variables=None):
        if query == PRODUCT_VARIANTS_BY_SKU:
            if lookup_error:
                raise lookup_error
            edges = [
                {"node": {"id": f"gid://Variant/{pid}", "sku": sku, "product": {"id": f"gid://Product/{pid}", "title": sku}}}
                for sku, pid in existing.items()
                if f'sku:"{sku}"' in variables["query"]
            ]
            return {"productVariants": {"edges": edges}}
        if query == PRODUCT_SET and variables["input"].get("id"):
            pid = variables["input"]["id"]
            return {"productSet": {"product": {"id": pid, "variants": {"edges": []}}, "userErrors": []}}
        if query == PRODUCT_SET:
            pid = len(created_ids) + 1
            created_ids.append(variables["input"]["variants"][0]["sku"])
            return {
                "productSet": {
                    "product": {"id": f"gid://Product/{pid}", "variants": {"edges": [{"node": {"id": f"gid://Variant/{pid}"}}]}},
                    "userErrors": [],
                }
            }
        if query == PRODUCTS_WITH_SKUS:
            return {"products": {"pageInfo": {"hasNextPage": False}, "edges": []}}
        if query == PRODUCT_DELETE and deleted is not None:
            deleted.append(variables["input"]["id"])
            return {"productDelete": {"deletedProductId": variables["input"]["id"], "userErrors": []}}
        raise AssertionError(f"unexpected query {query!r}")

    client = MagicMock()
    client.request = AsyncMock(side_effect=request)
    return client


@pytest.fixture
def stores():
    with patch(f"{_SERVICES}.config_store.get_config", new_callable=AsyncMock) as get_config, patch(
        f"{_SERVICES}.feed_fetcher.fetch", new_callable=AsyncMock
    ) as fetch, patch(f"{_SERVICES}.sync_log_store.create", new_callable=AsyncMock) as create_log, patch(
        f"{_SERVICES}.sync_log_store.update", new_callable=AsyncMock
    ) as update_log, patch(
        f"{_SERVICES}.sync_log_store.finish", new_callable=AsyncMock
    ) as finish_log, patch(
        f"{_SERVICES}.tracking_store.list_by_config", new_callable=AsyncMock
    ) as list_tracking, patch(
        f"{_SERVICES}.tracking_store.upsert", new_callable=AsyncMock
    ) as upsert, patch(
        f"{_SERVICES}.tracking_store.remove", new_callable=AsyncMock
    ) as remove_tracking:
        get_config.return_value = _config()
        create_log.return_value = 11
        list_tracking.return_value = []
        yield SimpleNamespace(
            get_config=get_config,
            fetch=fetch,
            create_log=create_log,
            update_log=update_log,
            finish_log=finish_log,
            list_tracking=list_tracking,
            upsert=upsert,
            remove_tracking=remove_tracking,
        )


@pytest.mark.asyncio
async def test_single_new_record_is_created_and_tracked(stores):
    stores.fetch.return_value = {"data": {"products": [{"sku": "NEW-1", "name": "New thing", "price": "9.99"}]}}
    created = []

    result = await run_sync(1, SyncOptions(), _platform(created))

    assert created == ["NEW-1"]
    assert (result.created, result.updated, result.deleted, result.failed) == (1, 0, 0, 0)
    assert result.sync_log_id == 11
    assert result.duplicates_removed == 0
    stores.upsert.assert_awaited_once_with(
        1, "NEW-1", "gid://Product/1", "gid://Variant/1", {"sku": "NEW-1", "name": "New thing", "price": "9.99"}
    )
    stores.finish_log.assert_awaited_once()
    args, kwargs = stores.finish_log.call_args
    assert args[:2] == (11, "completed")
    assert kwargs["succeeded"] == 1 and kwargs["failed"] == 0


@pytest.mark.asyncio
async def test_limited_run_and_records_without_sku(stores):
    stores.fetch.return_value = {
        "data": {"products": [{"name": "no sku"}, {"sku": "A", "name": "A"}, {"sku": "B", "name": "B"}]}
    }
    created = []

    result = await run_sync(1, SyncOptions(limited=True, limit=2), _platform(created))

    assert result.original_product_count == 3
    assert result.skipped == 1
    assert result.product_count == 1
    assert created == ["A"]


@pytest.mark.asyncio
async def test_feed_error_fails_the_run(stores):
    stores.fetch.side_effect = SourceFetchError("Could not download /feed.json: timed out")

    with pytest.raises(SourceFetchError):
        await run_sync(1, None, _platform([]))

    args, _ = stores.finish_log.call_args
    assert args[:2] == (11, "failed")


@pytest.mark.asyncio
async def test_missing_config_raises(stores):
    stores.get_config.return_value = None

    with pytest.raises(ConfigurationError):
        await run_sync(99, None, _platform([]))

    stores.create_log.assert_not_awaited()


@pytest.mark.asyncio
async def test_bulk_batch_error_marks_batch_failed(stores):
    stores.fetch.return_value = {"data": {"products": [{"sku": "A", "name": "A"}, {"sku": "B", "name": "B"}]}}

    with patch("catalog_sync.services.product_sync.BulkJobManager") as manager_cls:
        manager_cls.return_value.run = AsyncMock(side_effect=BulkJobError("Staged upload rejected"))
        result = await run_sync(1, SyncOptions(use_bulk=True), _platform([]))

    assert result.created == 0
    assert result.failed == 2
    args, _ = stores.finish_log.call_args
    assert args[:2] == (11, "completed_with_errors")


@pytest.mark.asyncio
async def test_limited_run_never_deletes_tracked_products_past_the_limit(stores):
    stores.fetch.return_value = {"data": {"products": [{"sku": "A", "name": "A"}, {"sku": "B", "name": "B"}]}}
    stores.list_tracking.return_value = [_tracked("A", 1), _tracked("B", 2), _tracked("C", 3)]
    deleted = []

    result = await run_sync(
        1, SyncOptions(limited=True, limit=1), _platform([], existing={"A": 1}, deleted=deleted)
    )

    assert result.updated == 1
    assert result.deleted == 0
    assert deleted == []
    stores.remove_tracking.assert_not_awaited()


@pytest.mark.asyncio
async def test_tracked_product_missing_from_feed_is_deleted(stores):
    stores.fetch.return_value = {"data": {"products": [{"sku": "A", "name": "A"}]}}
    stores.list_tracking.return_value = [_tracked("A", 1), _tracked("C", 3)]
    deleted = []

    result = await run_sync(1, SyncOptions(), _platform([], existing={"A": 1}, deleted=deleted))

    assert (result.created, result.updated, result.deleted, result.failed) == (0, 1, 1, 0)
    assert deleted == ["gid://Product/3"]
    stores.remove_tracking.assert_awaited_once_with(1, "C")
    args, _ = stores.finish_log.call_args
    assert args[:2] == (11, "completed")


@pytest.mark.asyncio
async def test_failed_lookups_never_create(stores):
    stores.fetch.return_value = {"data": {"products": [{"sku": "A", "name": "A"}, {"sku": "B", "name": "B"}]}}
    stores.list_tracking.return_value = [_tracked("A", 1)]
    created = []
    deleted = []
    client = _platform(created, deleted=deleted, lookup_error=TransportError("Bad Gateway", status_code=502))

    result = await run_sync(1, SyncOptions(), client)

    assert created == []
    assert deleted == []
    assert (result.created, result.updated, result.deleted, result.failed) == (0, 1, 0, 1)
    args, kwargs = stores.finish_log.call_args
    assert args[:2] == (11, "completed_with_errors")
    assert kwargs["failed"] == 1


@pytest.mark.asyncio
async def test_duplicate_cleanup_error_does_not_fail_the_run(stores):
    stores.fetch.return_value = {"data": {"products": [{"sku": "NEW-1", "name": "New thing"}]}}

    with patch(
        "catalog_sync.services.product_sync.cleanup_duplicates",
        new_callable=AsyncMock,
        side_effect=TransportError("Service Unavailable", status_code=503),
    ):
        result = await run_sync(1, SyncOptions(), _platform([]))

    assert result.created == 1
    assert result.duplicates_removed is None
    args, _ = stores.finish_log.call_args
    assert args[:2] == (11, "completed")


@pytest.mark.asyncio
async def test_bulk_timeout_fails_batch_and_run_continues(stores):
    stores.fetch.return_value = {
        "data": {"products": [{"sku": "A", "name": "A"}, {"sku": "B", "name": "B"}, {"sku": "D", "name": "D"}]}
    }
    stores.list_tracking.return_value = [_tracked("C", 3)]
    deleted = []
    client = _platform([], existing={"D": 4}, deleted=deleted)

    with patch("catalog_sync.services.product_sync.BulkJobManager") as manager_cls:
        manager_cls.return_value.run = AsyncMock(
            side_effect=[
                BulkJobTimeoutError("Bulk job gid://BulkOperation/1 did not finish"),
                BulkOutcome(operation="update", batch_size=1, succeeded=1),
            ]
        )
        result = await run_sync(1, SyncOptions(use_bulk=True), client)

    assert [c.args[1] for c in manager_cls.return_value.run.await_args_list] == ["create", "update"]
    assert (result.created, result.updated, result.deleted, result.failed) == (0, 1, 1, 2)
    assert deleted == ["gid://Product/3"]
    assert result.duplicates_removed == 0
    assert any(c.args[0] == PRODUCTS_WITH_SKUS for c in client.request.await_args_list)
    args, _ = stores.finish_log.call_args
    assert args[:2] == (11, "completed_with_errors")
