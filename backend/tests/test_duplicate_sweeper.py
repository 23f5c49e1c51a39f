from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from catalog_sync.services.duplicate_sweeper import DuplicateSweeper, plan_duplicate_deletions
from catalog_sync.services.platform_queries import PRODUCT_DELETE, PRODUCTS_WITH_SKUS


def _product(pid, sku, updated_at):
    return {
        "id": f"gid://Product/{pid}",
        "title": f"Product {pid}",
        "updatedAt": updated_at,
        "variants": {"edges": [{"node": {"id": f"gid://Variant/{pid}", "sku": sku}}]},
    }


P1 = _product(1, "X-1", "2024-01-01T00:00:00Z")
P2 = _product(2, "X-1", "2024-02-01T00:00:00Z")
P3 = _product(3, " x-1", "2024-03-01T00:00:00Z")
P4 = _product(4, "Y-1", "2024-01-15T00:00:00Z")


@pytest.mark.parametrize("products", [[P1, P2, P3, P4], [P3, P1, P4, P2], [P2, P4, P3, P1]])
def test_plan_keeps_most_recently_updated(products):
    groups, to_delete = plan_duplicate_deletions(products)

    assert groups == 1
    assert set(to_delete) == {"gid://Product/1", "gid://Product/2"}


def test_plan_counts_product_once_per_group():
    multi_variant = {
        "id": "gid://Product/5",
        "updatedAt": "2024-01-01T00:00:00Z",
        "variants": {"edges": [{"node": {"id": "v1", "sku": "Z"}}, {"node": {"id": "v2", "sku": "Z"}}]},
    }
    groups, to_delete = plan_duplicate_deletions([multi_variant])
    assert groups == 0
    assert to_delete == {}


def test_plan_skips_products_without_id():
    orphan = {"title": "No id", "updatedAt": "2024-05-01T00:00:00Z", "variants": {"edges": [{"node": {"sku": "X-1"}}]}}

    groups, to_delete = plan_duplicate_deletions([P1, orphan, P2])

    assert groups == 1
    assert set(to_delete) == {"gid://Product/1"}


@pytest.mark.asyncio
async def test_sweep_pages_and_deletes_in_batches():
    pages = {
        None: {"products": {"pageInfo": {"hasNextPage": True, "endCursor": "c1"}, "edges": [{"node": P1}, {"node": P4}]}},
        "c1": {"products": {"pageInfo": {"hasNextPage": False, "endCursor": None}, "edges": [{"node": P2}, {"node": P3}]}},
    }

    async def request(query, variables=None):
        if query == PRODUCTS_WITH_SKUS:
            return pages[variables["cursor"]]
        if query == PRODUCT_DELETE:
            if variables["input"]["id"] == "gid://Product/2":
                return {"productDelete": {"deletedProductId": None, "userErrors": [{"message": "Product does not exist"}]}}
            return {"productDelete": {"deletedProductId": variables["input"]["id"], "userErrors": []}}
        raise AssertionError(query)

    client = MagicMock()
    client.request = AsyncMock(side_effect=request)

    with patch("catalog_sync.services.duplicate_sweeper.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await DuplicateSweeper(client, batch_size=1, pause_seconds=0.1).sweep()

    assert result.total_scanned == 4
    assert result.duplicate_groups == 1
    assert result.deleted == 2
    assert result.errors == 0
    # two batches of one, one pause between them
    mock_sleep.assert_awaited_once_with(0.1)
    deleted_ids = {c.args[1]["input"]["id"] for c in client.request.await_args_list if c.args[0] == PRODUCT_DELETE}
    assert deleted_ids == {"gid://Product/1", "gid://Product/2"}


@pytest.mark.asyncio
async def test_sweep_counts_rejected_deletes_as_errors():
    page = {"products": {"pageInfo": {"hasNextPage": False}, "edges": [{"node": P1}, {"node": P3}]}}

    async def request(query, variables=None):
        if query == PRODUCTS_WITH_SKUS:
            return page
        return {"productDelete": {"userErrors": [{"message": "Access denied"}]}}

    client = MagicMock()
    client.request = AsyncMock(side_effect=request)

    with patch("catalog_sync.services.sync_log_store.update", new_callable=AsyncMock) as mock_update:
        result = await DuplicateSweeper(client, batch_size=5, pause_seconds=0).sweep(sync_log_id=7)

    assert result.deleted == 0
    assert result.errors == 1
    mock_update.assert_awaited_once()
    assert mock_update.call_args[0][0] == 7
