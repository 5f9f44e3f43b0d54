from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from backend.src.config import Settings
from backend.src.contracts.errors import CatalogUnavailableError
from backend.src.contracts.models import CourseSnapshot

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_MAX_RETRIES: int = 3
_BACKOFF_BASE_SECONDS: float = 2.0

_SNAPSHOT_ADAPTER = TypeAdapter(list[CourseSnapshot])


def parse_catalog(payload: Any) -> list[CourseSnapshot]:
    """Validate a catalog feed body: a list of courses or ``{"courses": [...]}``."""
    if isinstance(payload, dict):
        payload = payload.get("courses")
    if not isinstance(payload, list):
        raise CatalogUnavailableError("catalog feed is not a list of courses")
    try:
        return _SNAPSHOT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise CatalogUnavailableError(
            f"catalog feed failed validation: {exc.error_count()} errors"
        ) from exc


class JsonFeedCatalogProvider:
    """Fetch the full course catalog, already scraped, from a JSON feed."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = settings.catalog_feed_url
        self._timeout = settings.catalog_timeout_seconds
        self._transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"Accept": "application/json"},
            follow_redirects=True,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )

    async def list_all_items(self) -> list[CourseSnapshot]:
        last_error: Exception | None = None
        for attempt in range(1, _MAX_RETRIES + 1):
            log = logger.bind(url=self._url, attempt=attempt)
            try:
                async with self._build_client() as client:
                    response = await client.get(self._url)
                    response.raise_for_status()
                    payload = response.json()
            except (httpx.HTTPStatusError, httpx.RequestError, ValueError) as exc:
                last_error = exc
                backoff = _BACKOFF_BASE_SECONDS**attempt
                log.warning("catalog_fetch_retry", error=str(exc), backoff_seconds=backoff)
                if attempt < _MAX_RETRIES:
                    await asyncio.sleep(backoff)
                continue

            items = parse_catalog(payload)
            log.info("catalog_fetched", count=len(items))
            return items

        raise CatalogUnavailableError(
            f"Failed to fetch {self._url} after {_MAX_RETRIES} attempts"
        ) from last_error
