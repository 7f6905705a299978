"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        context: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and the ids involved."""
        self.message = message
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found", context: dict[str, Any] | None = None):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404, context=context)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", context: dict[str, Any] | None = None):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, context=context)


class TransientStoreException(AppException):
    """Store stayed unavailable after every retry attempt."""

    def __init__(
        self,
        message: str = "Database temporarily unavailable",
        context: dict[str, Any] | None = None,
    ):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503, context=context)
