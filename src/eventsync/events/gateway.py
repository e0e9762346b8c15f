"""Remote events API: gateway contract and httpx implementation.

The server speaks JSON with ``{success, data}`` envelopes for reads,
``{success, message, eventId}`` for creates, and ``{success, message}`` for
updates and deletes. Dates go out in SQL server form (``YYYY-MM-DD HH:MM:SS``,
UTC) and come back in whatever form the database driver produced; the engine
normalizes them.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Protocol

import httpx

from eventsync.core.temporal import format_server_instant
from eventsync.events.errors import RemoteGatewayError, RemoteRequestError, TransientRemoteError
from eventsync.events.models import Event, EventType, RemoteEventRecord, Roster
from eventsync.events.participants import coerce_id, coerce_number, parse_roster

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

_TRANSIENT_STATUS_CODES = frozenset({401, 403, 408, 429})


class TokenProvider(Protocol):
    """Source of the bearer token for API calls."""

    async def get_token(self) -> str | None:
        """Return the current token, or ``None`` when signed out."""
        ...


class StaticTokenProvider:
    """Token provider returning a fixed value."""

    def __init__(self, token: str | None) -> None:
        normalized = token.strip() if token else ""
        self._token = normalized or None

    async def get_token(self) -> str | None:
        return self._token


class EventGateway(abc.ABC):
    """Remote store contract used by the sync engine."""

    @abc.abstractmethod
    async def list_events(self) -> list[RemoteEventRecord]:
        """Fetch every event visible to the signed-in user."""
        ...

    @abc.abstractmethod
    async def get_event(self, event_id: str) -> RemoteEventRecord:
        """Fetch one event."""
        ...

    @abc.abstractmethod
    async def list_participants(self, event_id: str) -> Roster:
        """Fetch the participant roster of one event."""
        ...

    @abc.abstractmethod
    async def create_event(self, body: dict[str, Any]) -> str:
        """Create an event and return its server id."""
        ...

    @abc.abstractmethod
    async def update_event(self, event_id: str, body: dict[str, Any]) -> None:
        """Replace the editable fields of an event."""
        ...

    @abc.abstractmethod
    async def update_progress(self, event_id: str, progress: float) -> None:
        """Record the signed-in user's progress in an event."""
        ...

    @abc.abstractmethod
    async def delete_event(self, event_id: str) -> None:
        """Delete an event; returns only once the server confirmed it."""
        ...

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release transport resources."""
        ...


def event_to_wire(event: Event) -> dict[str, Any]:
    """Request body for ``POST /events`` and ``PUT /events/{id}``."""
    return {
        "title": event.title,
        "description": event.description,
        "activity": event.activity_kind,
        "goal": event.goal_value,
        "start_date": format_server_instant(event.start_instant),
        "end_date": format_server_instant(event.end_instant),
        "location": event.location,
        "event_type": event.event_type.value,
        "total_participants": event.total_participants,
        "team_count": event.team_count,
        "members_per_team": event.members_per_team,
    }


class HttpEventGateway(EventGateway):
    """httpx-backed gateway for the events REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        token_provider: TokenProvider,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        normalized = base_url.strip().rstrip("/")
        if not normalized:
            raise ValueError("base_url must be a non-empty string")
        self._base_url = normalized
        self._token_provider = token_provider
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds, connect=5.0))
        )

    async def list_events(self) -> list[RemoteEventRecord]:
        payload = await self._request("list_events", "GET", "/events")
        rows = payload.get("data")
        if not isinstance(rows, list):
            raise RemoteRequestError(
                operation="list_events", message="Response is missing a data array"
            )
        records: list[RemoteEventRecord] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            record = _parse_event_row(row)
            if record is not None:
                records.append(record)
        return records

    async def get_event(self, event_id: str) -> RemoteEventRecord:
        payload = await self._request("get_event", "GET", f"/events/{event_id}")
        row = payload.get("data")
        record = _parse_event_row(row) if isinstance(row, dict) else None
        if record is None:
            raise RemoteRequestError(
                operation="get_event", message=f"Response for event {event_id} has no usable data"
            )
        return record

    async def list_participants(self, event_id: str) -> Roster:
        payload = await self._request(
            "list_participants", "GET", f"/events/{event_id}/participants"
        )
        return parse_roster(payload)

    async def create_event(self, body: dict[str, Any]) -> str:
        payload = await self._request(
            "create_event", "POST", "/events", {**body, "auto_join": True}
        )
        data = payload.get("data")
        event_id = coerce_id(payload.get("eventId"))
        if event_id is None and isinstance(data, dict):
            event_id = coerce_id(data.get("Id", data.get("id")))
        if event_id is None:
            raise RemoteRequestError(
                operation="create_event", message="Create response did not include an event id"
            )
        return event_id

    async def update_event(self, event_id: str, body: dict[str, Any]) -> None:
        await self._request("update_event", "PUT", f"/events/{event_id}", body)

    async def update_progress(self, event_id: str, progress: float) -> None:
        await self._request(
            "update_progress", "PUT", f"/events/{event_id}/progress", {"progress": progress}
        )

    async def delete_event(self, event_id: str) -> None:
        payload = await self._request("delete_event", "DELETE", f"/events/{event_id}")
        if payload.get("success") is not True:
            raise RemoteRequestError(
                operation="delete_event",
                message=_envelope_message(payload) or "Server did not confirm the delete",
            )

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        token = await self._token_provider.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("No bearer token available for %s %s", method, path)

        try:
            response = await self._http_client.request(
                method, f"{self._base_url}{path}", json=body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise TransientRemoteError(
                operation=operation, message=str(exc) or exc.__class__.__name__
            ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            error_cls: type[RemoteGatewayError] = (
                TransientRemoteError
                if response.status_code >= 500 or response.status_code in _TRANSIENT_STATUS_CODES
                else RemoteRequestError
            )
            raise error_cls(
                operation=operation,
                status_code=response.status_code,
                message=_safe_error_message(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteRequestError(
                operation=operation,
                status_code=response.status_code,
                message="Invalid JSON payload from events API",
            ) from exc

        if not isinstance(payload, dict):
            raise RemoteRequestError(
                operation=operation,
                status_code=response.status_code,
                message="Events API payload must be a JSON object",
            )
        if payload.get("success") is False:
            raise RemoteRequestError(
                operation=operation,
                status_code=response.status_code,
                message=_envelope_message(payload) or "Server reported failure",
            )
        return payload


def _envelope_message(payload: dict[str, Any]) -> str | None:
    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return " ".join(message.split())[:200]
    return None


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        message = _envelope_message(payload)
        if message:
            return message

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def _parse_event_row(row: dict[str, Any]) -> RemoteEventRecord | None:
    external_id = coerce_id(row.get("Id", row.get("id", row.get("_id"))))
    if external_id is None:
        logger.warning("Skipping event row without an id")
        return None

    raw_type = _as_text(row.get("event_type", row.get("eventType"))).lower()
    current = row.get("current_value", row.get("progress"))

    try:
        return RemoteEventRecord(
            external_id=external_id,
            title=_as_text(row.get("title")),
            description=_as_text(row.get("description")),
            location=_as_text(row.get("location")),
            activity=_as_text(row.get("activity")) or "steps",
            goal=coerce_number(row.get("goal")),
            current_value=coerce_number(current) if current is not None else None,
            start_raw=row.get("start_date", row.get("startDate")),
            end_raw=row.get("end_date", row.get("endDate")),
            event_type=EventType.TEAM if raw_type == EventType.TEAM else EventType.INDIVIDUAL,
            total_participants=int(coerce_number(row.get("total_participants"))),
            team_count=int(coerce_number(row.get("team_count"))),
            members_per_team=int(coerce_number(row.get("members_per_team"))),
        )
    except (ValueError, OverflowError) as exc:
        logger.warning("Skipping malformed event row %s: %s", external_id, exc)
        return None
