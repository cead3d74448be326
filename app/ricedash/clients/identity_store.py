"""Server-side client for the identity store's backend API.

Only privileged server components use this client: it is authenticated with
the identity store secret key, which never reaches a browser.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from app.ricedash.clients.http_client import APIError, HttpClient
from app.ricedash.core.config import settings
from app.ricedash.core.error_catalog import ErrorCatalog
from app.ricedash.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)


def millis_to_datetime(value: Any) -> datetime | None:
    """Identity store timestamps are epoch milliseconds; stored as naive UTC."""
    if value is None or isinstance(value, bool):
        return None
    try:
        millis = int(value)
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass(frozen=True)
class IdentityRecord:
    id: str
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "IdentityRecord":
        metadata = payload.get("public_metadata")
        return cls(
            id=str(payload["id"]),
            username=payload.get("username"),
            first_name=payload.get("first_name"),
            last_name=payload.get("last_name"),
            metadata=metadata if isinstance(metadata, dict) else {},
            updated_at=millis_to_datetime(payload.get("updated_at")),
        )

    @property
    def display_name(self) -> str:
        username = _text(self.username)
        if username:
            return username
        first = _text(self.first_name)
        last = _text(self.last_name)
        full = f"{first} {last}".strip()
        return full or "User"


class IdentityStoreClient:
    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        *,
        timeout_seconds: float | None = None,
        page_size: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.IDENTITY_SECRET_KEY
        self.page_size = page_size or settings.IDENTITY_PAGE_SIZE
        self.http = HttpClient(
            base_url or settings.IDENTITY_API_URL,
            timeout_seconds=timeout_seconds or settings.IDENTITY_TIMEOUT_SEC,
            retry_max_attempts=settings.IDENTITY_RETRY_MAX_ATTEMPTS,
            retry_backoff_ms=settings.IDENTITY_RETRY_BACKOFF_MS,
            transport=transport,
        )

    def create_user(self, *, username: str, password: str, metadata: dict[str, Any]) -> IdentityRecord:
        payload = self._call(
            "POST",
            "/users",
            json={"username": username, "password": password, "public_metadata": metadata},
        )
        return IdentityRecord.from_payload(payload)

    def get_user(self, external_id: str) -> IdentityRecord:
        return IdentityRecord.from_payload(self._call("GET", f"/users/{external_id}"))

    def update_metadata(self, external_id: str, metadata: dict[str, Any]) -> IdentityRecord:
        payload = self._call("PATCH", f"/users/{external_id}/metadata", json={"public_metadata": metadata})
        return IdentityRecord.from_payload(payload)

    def delete_user(self, external_id: str) -> None:
        self._call("DELETE", f"/users/{external_id}")

    def list_users(self) -> list[IdentityRecord]:
        records: list[IdentityRecord] = []
        offset = 0
        while True:
            page = self._call("GET", "/users", params={"limit": self.page_size, "offset": offset})
            items = page.get("data") if isinstance(page, dict) else page
            if not isinstance(items, list):
                raise UpstreamError(details={"message": "Unexpected user list payload"})
            records.extend(IdentityRecord.from_payload(item) for item in items)
            if len(items) < self.page_size:
                return records
            offset += self.page_size

    def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            return self.http.request(method, path, token=self.secret_key, **kwargs)
        except APIError as exc:
            raise self._translate(method, path, exc) from exc

    @staticmethod
    def _translate(method: str, path: str, exc: APIError) -> UpstreamError:
        details = {"operation": f"{method} {path}", "message": exc.message}
        if exc.code == "TIMEOUT_ERROR":
            logger.warning("Identity store timed out on %s %s", method, path)
            return UpstreamError(ErrorCatalog.UPSTREAM_TIMEOUT, details)
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            upstream = exc.details if isinstance(exc.details, dict) else {}
            if upstream.get("errors"):
                details["errors"] = upstream["errors"]
            return UpstreamError(ErrorCatalog.UPSTREAM_REJECTED, details, upstream_status=exc.status_code)
        logger.warning("Identity store unavailable on %s %s: %s", method, path, exc.message)
        return UpstreamError(ErrorCatalog.UPSTREAM_UNAVAILABLE, details, upstream_status=exc.status_code)
