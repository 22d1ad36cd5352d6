"""
Error taxonomy for the turn queue engine.

Every engine failure is a TurnQueueError carrying a stable machine-readable
`error_code`, the HTTP status the API layer should answer with, and a
`details` dict. User-facing message text is chosen by the API layer from the
code; the message stored here is for logs.
"""

from typing import Any


class TurnQueueError(Exception):
    """Base class for all queue engine errors."""

    error_code = "TURN_QUEUE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "error_message": self.message,
            "details": self.details,
        }


class ValidationError(TurnQueueError):
    """Malformed input (normally rejected before reaching the engine)."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class DuplicateActiveTurn(TurnQueueError):
    """The mobile number already holds a waiting or confirmed turn."""

    error_code = "DUPLICATE_ACTIVE_TURN"
    status_code = 409


class InvalidTransition(TurnQueueError):
    """The requested status change is not allowed from the current status."""

    error_code = "INVALID_TRANSITION"
    status_code = 409


class NotFound(TurnQueueError):
    """No turn matches the given id or mobile number."""

    error_code = "TURN_NOT_FOUND"
    status_code = 404


class PermissionDenied(TurnQueueError):
    """The actor lacks the capability the operation requires."""

    error_code = "PERMISSION_DENIED"
    status_code = 403


class StorageUnavailable(TurnQueueError):
    """Database timed out or the connection failed. Safe to retry with backoff."""

    error_code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True


class ConcurrencyConflict(TurnQueueError):
    """Serialization retries were exhausted. Safe to retry with backoff."""

    error_code = "CONCURRENCY_CONFLICT"
    status_code = 503
    retryable = True
