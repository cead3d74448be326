import time
from dataclasses import dataclass
from typing import Any

import httpx


@dataclass
class APIError(Exception):
    code: str
    message: str
    details: Any | None = None
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class HttpClient:
    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 20,
        retry_max_attempts: int = 3,
        retry_backoff_ms: int = 150,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_max_attempts = max(1, retry_max_attempts)
        self.retry_backoff_ms = max(0, retry_backoff_ms)
        self.transport = transport

    def request(self, method: str, path: str, token: str | None = None, **kwargs: Any) -> Any:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}" if path else self.base_url

        allow_retry = method.upper() == "GET"

        with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
            for attempt in range(1, self.retry_max_attempts + 1):
                try:
                    response = client.request(method, url, headers=headers, **kwargs)
                except httpx.TimeoutException as exc:
                    if (not allow_retry) or attempt >= self.retry_max_attempts:
                        raise APIError(code="TIMEOUT_ERROR", message=f"{method} {url} timed out") from exc
                    self._backoff(attempt)
                    continue
                except httpx.TransportError as exc:
                    if (not allow_retry) or attempt >= self.retry_max_attempts:
                        raise APIError(code="NETWORK_ERROR", message=f"{method} {url} failed: {exc}") from exc
                    self._backoff(attempt)
                    continue

                if response.status_code >= 400:
                    if allow_retry and self._is_retryable_status(response.status_code) and attempt < self.retry_max_attempts:
                        self._backoff(attempt)
                        continue
                    raise APIError(
                        code="HTTP_ERROR",
                        message=f"{method} {url} returned {response.status_code}",
                        details=self._safe_json(response),
                        status_code=response.status_code,
                    )
                return self._safe_json(response)
        raise APIError(code="INTERNAL_ERROR", message="Max retry attempts reached")

    def _backoff(self, attempt: int) -> None:
        time.sleep((self.retry_backoff_ms * attempt) / 1000)

    @staticmethod
    def _is_retryable_status(status_code: int) -> bool:
        return 500 <= status_code <= 599

    @staticmethod
    def _safe_json(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"message": response.text}
