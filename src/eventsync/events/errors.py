"""Error taxonomy for event synchronization."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class EventSyncError(RuntimeError):
    """Base event sync error."""


class EventValidationError(EventSyncError):
    """Raised before any I/O when required fields are missing or invalid."""

    def __init__(self, fields: Iterable[str], message: str | None = None) -> None:
        self.fields = tuple(fields)
        self.message = message or f"Missing or invalid field(s): {', '.join(self.fields)}"
        super().__init__(self.message)


class EventNotFoundError(EventSyncError):
    """Raised when an operation targets an id absent from the collection."""

    def __init__(self, event_id: Any) -> None:
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class RemoteGatewayError(EventSyncError):
    """Raised when the remote events API call fails."""

    def __init__(self, *, operation: str, message: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        self.message = message
        status = f" ({status_code})" if status_code is not None else ""
        super().__init__(f"Remote {operation} failed{status}: {message}")


class TransientRemoteError(RemoteGatewayError):
    """Network, timeout, auth, or server-side failure; retrying later may succeed."""


class RemoteRequestError(RemoteGatewayError):
    """The server rejected the request or answered with an unusable payload."""
