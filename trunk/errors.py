"""
Error types for Trunk.

This module defines all exception types raised by the package:
- TrunkError: Base exception
- EventValidationError: Malformed or unknown event
- LedgerError: Invalid input to a resource ledger function
- CacheError / CacheCorruptionError: Local cache failures
- RemoteError and subclasses: Remote event store failures
- NotAuthenticatedError: Missing or rejected session
- DuplicateEventError: Insert of an already stored client id

Invariants:
    - All errors inherit from TrunkError
    - Errors carry a stable code for programmatic handling
    - Only NotAuthenticatedError is meant to reach the user directly;
      everything else is recovered or reported through sync status
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TrunkError(Exception):
    """Base exception for all Trunk errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TRUNK_ERROR"
        self.details = details or {}


class EventValidationError(TrunkError):
    """Event payload failed validation.

    Raised when:
    - A required field is missing or has the wrong type
    - The event type is unknown
    - A value is out of range (e.g. harvest result outside 1..5)
    """

    def __init__(
        self,
        message: str,
        event_type: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="EVENT_INVALID",
            details={"event_type": event_type, "field": field_name},
        )
        self.event_type = event_type
        self.field_name = field_name


class LedgerError(TrunkError):
    """Invalid season, environment or result passed to a ledger function."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message, code="LEDGER_INVALID", details={"value": value})
        self.value = value


class CacheError(TrunkError):
    """Local cache could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, code="CACHE_ERROR", details={"path": path})
        self.path = path


class CacheCorruptionError(CacheError):
    """Local cache contents are unreadable.

    The coordinator recovers from this with a full resync; it is never
    surfaced as a crash.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, path=path)
        self.code = "CACHE_CORRUPT"


class RemoteError(TrunkError):
    """Base class for remote event store failures.

    Attributes:
        retryable: Whether a later attempt may succeed
    """

    retryable = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code=code or "REMOTE_ERROR",
            details={"status_code": status_code},
        )
        self.status_code = status_code


class RemoteUnavailableError(RemoteError):
    """Remote store unreachable or returned a transient failure."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, code="REMOTE_UNAVAILABLE", status_code=status_code)


class RemoteTimeoutError(RemoteError):
    """Remote call exceeded its time budget."""

    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        super().__init__(message, code="REMOTE_TIMEOUT")
        self.details["timeout"] = timeout
        self.timeout = timeout


class NotAuthenticatedError(RemoteError):
    """No valid session for the remote store.

    This is not a transient failure: retrying without a new session will
    keep failing, so the coordinator stops retrying until resumed.
    """

    retryable = False

    def __init__(self, message: str = "Not authenticated", status_code: Optional[int] = None) -> None:
        super().__init__(message, code="AUTH_REQUIRED", status_code=status_code)


class DuplicateEventError(RemoteError):
    """Insert conflicted with an existing client id.

    For pushes this means the event is already stored remotely, which is
    success.
    """

    retryable = False

    def __init__(self, client_id: str) -> None:
        super().__init__(f"Event already stored: {client_id}", code="DUPLICATE_EVENT")
        self.details["client_id"] = client_id
        self.client_id = client_id
