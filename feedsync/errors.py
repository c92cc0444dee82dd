# feedsync/errors.py
# Error types shared by the sync layer, the storage backends and the HTTP surface

from enum import Enum


class AppError(Exception):
    """Base application error with structured response."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(AppError):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", details: dict = None):
        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            status_code=404,
            details=details
        )


class ValidationError(AppError):
    """Request validation failed."""
    def __init__(self, message: str = "Validation failed", details: dict = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class StorageError(AppError):
    """Persisted key-value store operation failed."""
    def __init__(self, message: str = "Storage operation failed", details: dict = None):
        super().__init__(
            message=message,
            error_code="STORAGE_ERROR",
            status_code=503,
            details=details
        )


class InvalidTransitionError(AppError):
    """A state machine was asked to move backward."""
    def __init__(self, message: str = "Invalid state transition", details: dict = None):
        super().__init__(
            message=message,
            error_code="INVALID_TRANSITION",
            status_code=409,
            details=details
        )


class ErrorKind(Enum):
    """Tag attached by the backend client to every query failure."""
    USER_NOT_FOUND = "user_not_found"
    PERMISSION_DENIED = "permission_denied"
    NETWORK = "network"
    UNKNOWN = "unknown"


class QueryError(AppError):
    """A remote query failed; `kind` says why."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN, details: dict = None):
        super().__init__(
            message=message,
            error_code=f"QUERY_{kind.name}",
            status_code=502,
            details=details
        )
        self.kind = kind


class UserNotFoundError(QueryError):
    """The backend has not provisioned the signed-in user yet."""
    def __init__(self, message: str = "User not found", details: dict = None):
        super().__init__(message=message, kind=ErrorKind.USER_NOT_FOUND, details=details)
