"""Error taxonomy shared by the services and the HTTP layer.

Validation and not-found errors are never retried by the core. External
service failures (storage, AI) are reported as retryable.
"""
from typing import Any, Optional


class SnaptagError(Exception):
    """Base class for errors the API turns into a JSON error response."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(SnaptagError):
    """Bad input. Raised before any external service is touched."""

    status_code = 400


class NotFoundError(SnaptagError):
    """Record missing or not owned by the requesting user."""

    status_code = 404

    def __init__(self, message: str = "File not found or access denied", details: Optional[Any] = None):
        super().__init__(message, details)


class ExternalServiceError(SnaptagError):
    """Storage or AI adapter failed."""

    status_code = 503
    retryable = True

    def __init__(self, service: str, message: str = "External service error", details: Optional[Any] = None):
        self.service = service
        super().__init__(f"{service}: {message}", details)


def safe_error_message(e: BaseException, fallback: str = "Operation failed") -> str:
    """Extract a meaningful error message from an exception.

    Some exceptions (especially from third-party libraries) produce an empty
    str(e). This helper falls back to the exception class name.
    """
    if isinstance(e, SnaptagError):
        return e.message
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg
