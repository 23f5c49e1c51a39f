import asyncio
import logging
from typing import Any, Optional

import httpx

from catalog_sync.config import settings
from catalog_sync.errors import RemoteQueryError, TransportError, ValidationError

logger = logging.getLogger(__name__)

# Every Admin API call in the process goes through this cap
API_SEMAPHORE = asyncio.Semaphore(settings.api_concurrency)

_MAX_ATTEMPTS = 3
_THROTTLE_BACKOFF_SECONDS = 2.0


class PlatformClient:
    """Thin GraphQL client for the commerce platform Admin API.

    Transport failures raise ``TransportError``; top-level GraphQL errors raise
    ``RemoteQueryError``. Per-mutation ``userErrors`` are left in the payload for
    the caller to check with ``raise_for_user_errors``.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        endpoint: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> None:
        self._http = http_client
        self.endpoint = endpoint or settings.graphql_endpoint
        self._access_token = access_token if access_token is not None else settings.shop_access_token

    async def request(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        for attempt in range(_MAX_ATTEMPTS):
            async with API_SEMAPHORE:
                body = await self._post(query, variables or {})

            errors = body.get("errors") or []
            if errors and _is_throttled(errors) and attempt < _MAX_ATTEMPTS - 1:
                logger.warning("Platform API throttled, retrying (attempt %d)", attempt + 1)
                await asyncio.sleep(_THROTTLE_BACKOFF_SECONDS * (attempt + 1))
                continue
            if errors:
                messages = "; ".join(str(e.get("message", e)) for e in errors)
                raise RemoteQueryError(f"GraphQL errors: {messages}", errors=errors)
            return body.get("data") or {}

        raise TransportError("Platform API still throttled after retries", status_code=429)

    async def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers={
                    "X-Shopify-Access-Token": self._access_token,
                    "Content-Type": "application/json",
                },
                timeout=settings.http_timeout_seconds,
            )
            if response.status_code == 429:
                return {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Platform API error %s: %s", e.response.status_code, e.response.text[:500]
            )
            raise TransportError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Platform API transport error: %s", e)
            raise TransportError(str(e) or e.__class__.__name__) from e

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Platform API returned a non-JSON body") from e
        if not isinstance(body, dict):
            raise TransportError("Platform API returned an unexpected body")
        return body

    async def upload_staged(
        self,
        url: str,
        parameters: list[dict[str, str]],
        content: bytes,
        filename: str = "bulk-operation.jsonl",
    ) -> None:
        """Multipart POST of a payload to a staged upload target."""
        form = {p["name"]: p["value"] for p in parameters}
        try:
            response = await self._http.post(
                url,
                data=form,
                files={"file": (filename, content, "text/jsonl")},
                timeout=settings.http_timeout_seconds,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Staged upload failed: {e}") from e
        if not response.is_success:
            raise TransportError(
                f"Staged upload failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

    async def fetch_text(self, url: str) -> str:
        try:
            response = await self._http.get(url, timeout=settings.http_timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} fetching {url}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e
        return response.text


def _is_throttled(errors: list[dict[str, Any]]) -> bool:
    return any((e.get("extensions") or {}).get("code") == "THROTTLED" for e in errors)


def raise_for_user_errors(payload: Optional[dict[str, Any]], operation: str) -> None:
    """Raise ValidationError when a mutation payload carries userErrors."""
    user_errors = (payload or {}).get("userErrors") or []
    if user_errors:
        messages = "; ".join(str(e.get("message", "")) for e in user_errors)
        raise ValidationError(f"{operation} rejected: {messages}", user_errors=user_errors)
