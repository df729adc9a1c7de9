from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    CUSTODIAN_INACTIVE = ErrorDefinition(
        "CUSTODIAN_INACTIVE",
        "Custodian is inactive",
        status.HTTP_403_FORBIDDEN,
    )
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    NOT_FOUND = ErrorDefinition(
        "NOT_FOUND",
        "Resource not found",
        status.HTTP_404_NOT_FOUND,
    )
    INSUFFICIENT_STOCK = ErrorDefinition(
        "INSUFFICIENT_STOCK",
        "Insufficient available stock",
        status.HTTP_409_CONFLICT,
    )
    MISSING_PRICE = ErrorDefinition(
        "MISSING_PRICE",
        "Required price is missing",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    MISSING_SIGNATURE = ErrorDefinition(
        "MISSING_SIGNATURE",
        "Signature is required",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INVALID_TRANSITION = ErrorDefinition(
        "INVALID_TRANSITION",
        "Invalid state transition",
        status.HTTP_409_CONFLICT,
    )
    CONCURRENT_MODIFICATION = ErrorDefinition(
        "CONCURRENT_MODIFICATION",
        "Concurrent modification, retry the operation",
        status.HTTP_409_CONFLICT,
    )
    STORAGE_ERROR = ErrorDefinition(
        "STORAGE_ERROR",
        "Object storage error",
        status.HTTP_502_BAD_GATEWAY,
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
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REQUIRED = ErrorDefinition(
        "IDEMPOTENCY_KEY_REQUIRED",
        "Idempotency key required",
        status.HTTP_400_BAD_REQUEST,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)

    def as_payload(self) -> dict:
        return {"code": self.error.code, "message": self.error.message, "details": self.details}
