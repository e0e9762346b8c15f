"""Shared test doubles and fixtures for the eventsync test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from eventsync.events.engine import EventSyncEngine
from eventsync.events.errors import RemoteRequestError, TransientRemoteError
from eventsync.events.gateway import EventGateway
from eventsync.events.models import EventType, RemoteEventRecord, Roster
from eventsync.events.writer import KeyedWriteSerializer
from eventsync.storage.cache import MemoryCache

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingAlerts:
    def __init__(self) -> None:
        self.alerts: list[tuple[str, str]] = []

    def notify(self, title: str, message: str) -> None:
        self.alerts.append((title, message))


class FakeGateway(EventGateway):
    """In-memory events API.

    ``fail`` holds operation names that fail for every call; ``fail_ids``
    maps an operation name to the event ids it fails for; ``fail_titles``
    makes ``create_event`` fail for bodies with those titles.
    """

    def __init__(self) -> None:
        self.records: dict[str, RemoteEventRecord] = {}
        self.rosters: dict[str, Roster] = {}
        self.progress: dict[str, float] = {}
        self.updates: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.calls: list[tuple[str, str | None]] = []
        self.fail: set[str] = set()
        self.fail_ids: dict[str, set[str]] = {}
        self.fail_titles: set[str] = set()
        self.delay: float = 0
        self.on_call: Any = None
        self.closed = False
        self._next_id = 100

    def seed(
        self,
        external_id: str,
        *,
        title: str,
        start: Any,
        end: Any,
        event_type: EventType = EventType.INDIVIDUAL,
        roster: Roster | None = None,
        **extra: Any,
    ) -> RemoteEventRecord:
        record = RemoteEventRecord(
            external_id=external_id,
            title=title,
            start_raw=start,
            end_raw=end,
            event_type=event_type,
            **extra,
        )
        self.records[external_id] = record
        if roster is not None:
            self.rosters[external_id] = roster
        return record

    async def _check(self, operation: str, event_id: str | None = None) -> None:
        self.calls.append((operation, event_id))
        if self.on_call is not None:
            self.on_call(operation, event_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.fail or (
            event_id is not None and event_id in self.fail_ids.get(operation, set())
        ):
            raise TransientRemoteError(
                operation=operation, message="server unavailable", status_code=503
            )

    def called(self, operation: str) -> list[str | None]:
        return [event_id for op, event_id in self.calls if op == operation]

    async def list_events(self) -> list[RemoteEventRecord]:
        await self._check("list_events")
        return list(self.records.values())

    async def get_event(self, event_id: str) -> RemoteEventRecord:
        await self._check("get_event", event_id)
        if event_id not in self.records:
            raise RemoteRequestError(operation="get_event", message="not found", status_code=404)
        return self.records[event_id]

    async def list_participants(self, event_id: str) -> Roster:
        await self._check("list_participants", event_id)
        return self.rosters.get(event_id, Roster())

    async def create_event(self, body: dict[str, Any]) -> str:
        await self._check("create_event")
        if body.get("title") in self.fail_titles:
            raise TransientRemoteError(operation="create_event", message="server unavailable")
        event_id = str(self._next_id)
        self._next_id += 1
        self.created.append(body)
        self.records[event_id] = RemoteEventRecord(
            external_id=event_id,
            title=body["title"],
            description=body.get("description", ""),
            location=body.get("location", ""),
            activity=body.get("activity", "steps"),
            goal=body.get("goal", 0),
            start_raw=body["start_date"],
            end_raw=body["end_date"],
            event_type=EventType(body["event_type"]),
        )
        return event_id

    async def update_event(self, event_id: str, body: dict[str, Any]) -> None:
        await self._check("update_event", event_id)
        self.updates[event_id] = body
        self.records[event_id] = self.records[event_id].model_copy(
            update={"title": body["title"], "description": body["description"]}
        )

    async def update_progress(self, event_id: str, progress: float) -> None:
        await self._check("update_progress", event_id)
        self.progress[event_id] = progress

    async def delete_event(self, event_id: str) -> None:
        await self._check("delete_event", event_id)
        if event_id not in self.records:
            raise RemoteRequestError(
                operation="delete_event", message="Event not found", status_code=404
            )
        del self.records[event_id]

    async def shutdown(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest.fixture
def serializer() -> KeyedWriteSerializer:
    return KeyedWriteSerializer()


@pytest.fixture
def engine(gateway, cache, alerts, serializer, clock) -> EventSyncEngine:
    return EventSyncEngine(
        gateway=gateway, cache=cache, alerts=alerts, serializer=serializer, clock=clock
    )
