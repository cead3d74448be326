"""Domain error taxonomy layered on top of ``AppError``.

``ValidationError``, ``UpstreamError``, ``LocalStoreError``, ``SignatureError``
and ``StockRefreshError`` are rendered by the API exception handlers.
``ConsistencyError`` and ``AuthorizationDenied`` never leave the service layer:
the first is logged for reconciliation, the second becomes an empty result.
"""

from __future__ import annotations

from app.ricedash.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition


class ValidationError(AppError):
    def __init__(self, error: ErrorDefinition = ErrorCatalog.VALIDATION_ERROR, details: object | None = None):
        super().__init__(error, details)


class UpstreamError(AppError):
    """Identity store rejected the call or could not be reached."""

    def __init__(
        self,
        error: ErrorDefinition = ErrorCatalog.UPSTREAM_UNAVAILABLE,
        details: object | None = None,
        *,
        upstream_status: int | None = None,
    ):
        super().__init__(error, details)
        self.upstream_status = upstream_status

    @property
    def retryable(self) -> bool:
        return self.error is not ErrorCatalog.UPSTREAM_REJECTED


class LocalStoreError(AppError):
    def __init__(self, details: object | None = None):
        super().__init__(ErrorCatalog.LOCAL_STORE_ERROR, details)


class SignatureError(AppError):
    def __init__(self, error: ErrorDefinition = ErrorCatalog.SIGNATURE_INVALID, details: object | None = None):
        super().__init__(error, details)


class StockRefreshError(AppError):
    def __init__(self, error: ErrorDefinition, details: object | None = None, *, timestamp: str | None = None):
        payload = dict(details or {}) if isinstance(details, dict) or details is None else {"reason": details}
        if timestamp:
            payload["timestamp"] = timestamp
        super().__init__(error, payload)


class ConsistencyError(Exception):
    """A two-store write partially succeeded."""

    def __init__(self, operation: str, external_id: str | None, reason: str):
        self.operation = operation
        self.external_id = external_id
        self.reason = reason
        super().__init__(f"{operation} left stores diverged for {external_id}: {reason}")


class AuthorizationDenied(Exception):
    def __init__(self, entity: str, operation: str):
        self.entity = entity
        self.operation = operation
        super().__init__(f"{operation} on {entity} denied")
