"""Event repository: models, remote gateway, and the sync engine."""

from eventsync.events.alerts import AlertSink, LoggingAlertSink
from eventsync.events.engine import EventSyncEngine
from eventsync.events.errors import (
    EventNotFoundError,
    EventSyncError,
    EventValidationError,
    RemoteGatewayError,
    RemoteRequestError,
    TransientRemoteError,
)
from eventsync.events.gateway import (
    EventGateway,
    HttpEventGateway,
    StaticTokenProvider,
    TokenProvider,
)
from eventsync.events.models import (
    ClearFailure,
    ClearPastReport,
    Event,
    EventDraft,
    EventType,
    LocalId,
    Participant,
    ReconcileReport,
    RemoteEventRecord,
    RemoteId,
    Roster,
)
from eventsync.events.writer import KeyedWriteSerializer

__all__ = [
    "AlertSink",
    "ClearFailure",
    "ClearPastReport",
    "Event",
    "EventDraft",
    "EventGateway",
    "EventNotFoundError",
    "EventSyncEngine",
    "EventSyncError",
    "EventType",
    "EventValidationError",
    "HttpEventGateway",
    "KeyedWriteSerializer",
    "LocalId",
    "LoggingAlertSink",
    "Participant",
    "ReconcileReport",
    "RemoteEventRecord",
    "RemoteGatewayError",
    "RemoteId",
    "RemoteRequestError",
    "Roster",
    "StaticTokenProvider",
    "TokenProvider",
    "TransientRemoteError",
]
