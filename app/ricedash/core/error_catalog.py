from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_400_BAD_REQUEST,
    )
    PASSWORD_TOO_SHORT = ErrorDefinition(
        "PASSWORD_TOO_SHORT",
        "Password must be at least 8 characters long",
        status.HTTP_400_BAD_REQUEST,
    )
    INVALID_ROLE = ErrorDefinition(
        "INVALID_ROLE",
        "Invalid role specified",
        status.HTTP_400_BAD_REQUEST,
    )
    UNKNOWN_ACTION = ErrorDefinition(
        "UNKNOWN_ACTION",
        "Unknown gateway action",
        status.HTTP_400_BAD_REQUEST,
    )
    SIGNATURE_MISSING = ErrorDefinition(
        "SIGNATURE_MISSING",
        "Missing webhook signature headers",
        status.HTTP_400_BAD_REQUEST,
    )
    SIGNATURE_INVALID = ErrorDefinition(
        "SIGNATURE_INVALID",
        "Invalid webhook signature",
        status.HTTP_400_BAD_REQUEST,
    )
    WEBHOOK_NOT_CONFIGURED = ErrorDefinition(
        "WEBHOOK_NOT_CONFIGURED",
        "Webhook secret not configured",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    UPSTREAM_REJECTED = ErrorDefinition(
        "UPSTREAM_REJECTED",
        "Identity store rejected the request",
        status.HTTP_400_BAD_REQUEST,
    )
    UPSTREAM_UNAVAILABLE = ErrorDefinition(
        "UPSTREAM_UNAVAILABLE",
        "Identity store unavailable",
        status.HTTP_502_BAD_GATEWAY,
    )
    UPSTREAM_TIMEOUT = ErrorDefinition(
        "UPSTREAM_TIMEOUT",
        "Identity store timed out",
        status.HTTP_504_GATEWAY_TIMEOUT,
    )
    IDENTITY_LISTING_EMPTY = ErrorDefinition(
        "IDENTITY_LISTING_EMPTY",
        "Identity store returned no users; reconciliation aborted",
        status.HTTP_502_BAD_GATEWAY,
    )
    LOCAL_STORE_ERROR = ErrorDefinition(
        "LOCAL_STORE_ERROR",
        "Failed to write user directory",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    FEED_UNAVAILABLE = ErrorDefinition(
        "FEED_UNAVAILABLE",
        "Stock feed request failed",
        status.HTTP_502_BAD_GATEWAY,
    )
    FEED_TIMEOUT = ErrorDefinition(
        "FEED_TIMEOUT",
        "Stock feed timed out",
        status.HTTP_504_GATEWAY_TIMEOUT,
    )
    FEED_MALFORMED = ErrorDefinition(
        "FEED_MALFORMED",
        "Invalid response format: expected records array",
        status.HTTP_502_BAD_GATEWAY,
    )
    STOCK_REFRESH_EMPTY = ErrorDefinition(
        "STOCK_REFRESH_EMPTY",
        "No valid stock records to insert",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    STOCK_REFRESH_REPLACE_FAILED = ErrorDefinition(
        "STOCK_REFRESH_REPLACE_FAILED",
        "Stock replacement failed after delete; transaction rolled back",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)
