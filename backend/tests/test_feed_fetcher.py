import ftplib
from unittest.mock import patch

import pytest

from catalog_sync.errors import SourceFetchError
from catalog_sync.services.feed_fetcher import extract_data_path, fetch

_PARAMS = {"host": "ftp.test", "port": 21, "user": "feed", "password": "secret"}


def test_extract_nested_list():
    document = {"data": {"products": [{"sku": "A"}, {"sku": "B"}, "junk"]}}
    assert extract_data_path(document, "data.products") == [{"sku": "A"}, {"sku": "B"}]


def test_extract_root_list_and_single_object():
    assert extract_data_path([{"sku": "A"}], None) == [{"sku": "A"}]
    assert extract_data_path({"products": {"sku": "A"}}, "products") == [{"sku": "A"}]


def test_extract_missing_path():
    with pytest.raises(SourceFetchError):
        extract_data_path({"data": {}}, "data.products")


def test_extract_wrong_type():
    with pytest.raises(SourceFetchError):
        extract_data_path({"products": "nope"}, "products")


@pytest.mark.asyncio
async def test_fetch_parses_json_with_bom():
    with patch("catalog_sync.services.feed_fetcher._download_sync", return_value=b'\xef\xbb\xbf{"products": []}'):
        assert await fetch("/feed.json", _PARAMS) == {"products": []}


@pytest.mark.asyncio
async def test_fetch_wraps_ftp_errors():
    with patch("catalog_sync.services.feed_fetcher._download_sync", side_effect=ftplib.error_perm("550 No such file")):
        with pytest.raises(SourceFetchError):
            await fetch("/missing.json", _PARAMS)


@pytest.mark.asyncio
async def test_fetch_rejects_invalid_json():
    with patch("catalog_sync.services.feed_fetcher._download_sync", return_value=b"<html>"):
        with pytest.raises(SourceFetchError):
            await fetch("/feed.json", _PARAMS)


@pytest.mark.asyncio
async def test_fetch_requires_host_and_path():
    with pytest.raises(SourceFetchError):
        await fetch("", _PARAMS)
