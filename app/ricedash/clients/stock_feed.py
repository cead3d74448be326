from __future__ import annotations

import logging
from typing import Any

import httpx

from app.ricedash.clients.http_client import APIError, HttpClient
from app.ricedash.core.config import settings
from app.ricedash.core.error_catalog import ErrorCatalog
from app.ricedash.core.exceptions import StockRefreshError
from app.ricedash.db.models import utcnow

logger = logging.getLogger(__name__)


class StockFeedClient:
    """Reads the ERP storage-per-product view."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.STOCK_FEED_API_KEY
        self.http = HttpClient(
            url or settings.STOCK_FEED_URL,
            timeout_seconds=timeout_seconds or settings.STOCK_FEED_TIMEOUT_SEC,
            retry_max_attempts=2,
            transport=transport,
        )

    def fetch_records(self) -> list[dict[str, Any]]:
        try:
            payload = self.http.request("GET", "", token=self.api_key, headers={"Content-Type": "application/json"})
        except APIError as exc:
            error = ErrorCatalog.FEED_TIMEOUT if exc.code == "TIMEOUT_ERROR" else ErrorCatalog.FEED_UNAVAILABLE
            logger.error("Stock feed request failed: %s", exc.message)
            raise StockRefreshError(
                error,
                {"message": exc.message, "upstream_status": exc.status_code},
                timestamp=utcnow().isoformat(),
            ) from exc
        records = payload.get("records") if isinstance(payload, dict) else None
        if not isinstance(records, list):
            logger.error("Stock feed returned no records array")
            raise StockRefreshError(
                ErrorCatalog.FEED_MALFORMED,
                {"message": "Invalid response format: expected records array"},
                timestamp=utcnow().isoformat(),
            )
        logger.info("Fetched %s records from stock feed", len(records))
        return records
