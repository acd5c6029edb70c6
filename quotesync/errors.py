"""
Error taxonomy for the quote sync layer.

Hierarchy:
    QuoteSyncError (base)
    ├── NetworkError     - transport failure, no HTTP response
    ├── RemoteError      - backend answered with a non-2xx status
    ├── AbortedError     - request cancelled, never shown to the user
    ├── StorageError     - durable store could not be written
    ├── ValidationError  - caller supplied bad input (page < 1, bad form)
    └── SyncError        - an online write failed; wraps the cause

AbortedError is absorbed by the sync engine and the page cache. Everything
else propagates to the caller, which owns user-facing presentation.
"""

from typing import Any, Dict, Optional


class QuoteSyncError(Exception):
    """Base exception for the sync layer."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NetworkError(QuoteSyncError):
    """The request never produced an HTTP response."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, {"url": url} if url else None)
        self.url = url


class RemoteError(QuoteSyncError):
    """Non-2xx response from the backend."""

    def __init__(self, status_code: int, status_text: str = "", url: Optional[str] = None):
        message = f"Error {status_code}: {status_text}".rstrip(": ")
        details = {"status_code": status_code}
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.status_code = status_code
        self.status_text = status_text


class AbortedError(QuoteSyncError):
    """The request was cancelled through its CancelToken."""

    def __init__(self, message: str = "Request aborted"):
        super().__init__(message)


class StorageError(QuoteSyncError):
    """
    A durable store write failed.

    Raised for writes only; reads fail open. Losing a queued write is a
    data-loss incident, so callers must surface this.
    """

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, {"key": key} if key else None)
        self.key = key


class ValidationError(QuoteSyncError):
    """Invalid caller input. ``errors`` maps field paths to messages."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message, {"errors": errors} if errors else None)
        self.errors = errors or {}


class SyncError(QuoteSyncError):
    """An online write failed and was not queued."""

    def __init__(self, message: str, cause: Optional[QuoteSyncError] = None):
        details = None
        if cause is not None:
            details = {"cause": type(cause).__name__}
            if isinstance(cause, RemoteError):
                details["status_code"] = cause.status_code
        super().__init__(message, details)
        self.cause = cause
