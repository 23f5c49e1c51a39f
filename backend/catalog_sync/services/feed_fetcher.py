import asyncio
import ftplib
import io
import json
import logging
from typing import Any, Mapping, Optional

from catalog_sync.config import settings
from catalog_sync.errors import SourceFetchError

logger = logging.getLogger(__name__)

FTP_SEMAPHORE = asyncio.Semaphore(settings.ftp_concurrency)


def _download_sync(path: str, params: Mapping[str, Any]) -> bytes:
    buffer = io.BytesIO()
    ftp = ftplib.FTP(timeout=settings.http_timeout_seconds)
    try:
        ftp.connect(params["host"], int(params.get("port") or 21))
        ftp.login(params.get("user") or "anonymous", params.get("password") or "")
        ftp.retrbinary(f"RETR {path}", buffer.write)
    finally:
        ftp.close()
    return buffer.getvalue()


async def fetch(path: str, connection_params: Mapping[str, Any]) -> Any:
    """Download a JSON document over FTP and parse it."""
    if not path or not connection_params.get("host"):
        raise SourceFetchError("FTP host and file path are required")

    logger.info("FTP: downloading %s from %s", path, connection_params.get("host"))
    try:
        async with FTP_SEMAPHORE:
            raw = await asyncio.to_thread(_download_sync, path, connection_params)
    except (ftplib.Error, OSError, EOFError) as e:
        raise SourceFetchError(f"Could not download {path}: {e}") from e

    try:
        document = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as e:
        raise SourceFetchError(f"Feed {path} is not valid JSON: {e}") from e
    logger.info("FTP: downloaded %s (%d bytes)", path, len(raw))
    return document


def extract_data_path(document: Any, data_path: Optional[str]) -> list[dict[str, Any]]:
    """Walk a dot-path such as ``data.products`` down to the record list."""
    records = document
    if data_path:
        for part in data_path.split("."):
            if not isinstance(records, Mapping) or part not in records:
                raise SourceFetchError(f"Data path '{data_path}' not found in feed")
            records = records[part]

    if isinstance(records, Mapping):
        records = [records]
    if not isinstance(records, list):
        raise SourceFetchError(
            f"Expected a list at data path '{data_path or 'root'}', got {type(records).__name__}"
        )
    return [r for r in records if isinstance(r, Mapping)]
