"""Event synchronization engine.

Keeps the in-memory event collection consistent with the remote events API
and the local cache:

- reads go remote first and fall back to the cache, never raising
- creates are local-first: a failed remote create still yields an event with
  a temporary ``LocalId`` that ``reconcile()`` posts later
- updates and progress writes are optimistic: local state is kept when the
  remote call fails, the event is flagged pending, and the error is raised
- deletes are conservative: server-known events leave the collection only
  once the server confirmed the delete

Every public operation runs under the writer slot of the cache key, so
operations on one collection never interleave.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from eventsync.core.lifecycle import LifecycleState, classify
from eventsync.core.metrics import SyncMetrics
from eventsync.core.temporal import (
    TemporalParseError,
    normalize_instant,
    parse_instant,
)
from eventsync.events.alerts import AlertSink, LoggingAlertSink
from eventsync.events.errors import (
    EventNotFoundError,
    EventValidationError,
    RemoteGatewayError,
)
from eventsync.events.gateway import EventGateway, event_to_wire
from eventsync.events.models import (
    EMPTY_ROSTER,
    ClearFailure,
    ClearPastReport,
    Event,
    EventDraft,
    EventType,
    LocalId,
    ReconcileReport,
    RemoteEventRecord,
    RemoteId,
    Roster,
    deserialize_events,
    parse_event_id,
    serialize_events,
)
from eventsync.events.participants import reconcile_team_progress, roster_progress
from eventsync.events.writer import KeyedWriteSerializer
from eventsync.storage.cache import DEFAULT_CACHE_KEY, CacheError, LocalCache

logger = logging.getLogger(__name__)

EventListener = Callable[[tuple[Event, ...]], None]
EventRef = LocalId | RemoteId | str | int


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EventSyncEngine:
    """Repository for the user's events.

    Parameters
    ----------
    gateway:
        Remote events API.
    cache:
        Local cache holding the serialized collection under *cache_key*.
    alerts:
        Sink for user-facing messages. Defaults to logging them.
    serializer:
        Writer slot registry; pass the same instance to every engine that
        shares *cache_key*.
    clock:
        Returns the current instant; injectable for tests.
    """

    def __init__(
        self,
        *,
        gateway: EventGateway,
        cache: LocalCache,
        cache_key: str = DEFAULT_CACHE_KEY,
        alerts: AlertSink | None = None,
        serializer: KeyedWriteSerializer | None = None,
        clock: Callable[[], datetime] = _utcnow,
        metrics: SyncMetrics | None = None,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._cache_key = cache_key
        self._alerts = alerts if alerts is not None else LoggingAlertSink()
        self._serializer = serializer if serializer is not None else KeyedWriteSerializer()
        self._clock = clock
        self._metrics = metrics if metrics is not None else SyncMetrics(cache_key)
        self._events: list[Event] = []
        self._listeners: list[EventListener] = []
        self._next_local_seq = 1
        self._hydrated = False

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    @property
    def active_events(self) -> list[Event]:
        return self._in_state(LifecycleState.ACTIVE)

    @property
    def upcoming_events(self) -> list[Event]:
        return self._in_state(LifecycleState.UPCOMING)

    @property
    def past_events(self) -> list[Event]:
        return self._in_state(LifecycleState.PAST)

    def _in_state(self, state: LifecycleState) -> list[Event]:
        return [event for event in self._events if event.lifecycle_state == state]

    def get_event(self, event_id: EventRef) -> Event:
        """Return the event with *event_id* from the in-memory collection.

        Raises:
            EventNotFoundError: If no such event is held
        """
        return self._events[self._index_of(self._parse_ref(event_id))]

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Call *listener* with the full collection after every change.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def refresh_lifecycle(self) -> None:
        """Re-derive every lifecycle state against the current clock."""
        now = self._now()
        refreshed = [self._classified(event, now) for event in self._events]
        if any(a.lifecycle_state != b.lifecycle_state for a, b in zip(refreshed, self._events)):
            self._events = refreshed
            self._notify()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load(self) -> tuple[Event, ...]:
        """Refresh the collection from the server, or from the cache when offline.

        Never raises for remote or cache failures; the result may be empty.
        """
        async with self._serializer.hold(self._cache_key):
            await self._load_locked()
            return self.events

    async def add_event(self, draft: EventDraft | Mapping[str, Any]) -> Event:
        """Create an event, server-first with a local-only fallback.

        Raises:
            EventValidationError: If title, start, end, or event type is
                missing, a date cannot be parsed, or end precedes start
        """
        if not isinstance(draft, EventDraft):
            try:
                draft = EventDraft.model_validate(dict(draft))
            except ValidationError as exc:
                fields = [str(error["loc"][0]) for error in exc.errors() if error["loc"]]
                raise EventValidationError(fields) from exc
        event_type, start, end = _validate_draft(draft)

        async with self._serializer.hold(self._cache_key):
            await self._hydrate_locked()
            event = Event(
                id=self._allocate_local_id(),
                title=draft.title.strip() if draft.title else "",
                description=draft.description,
                location=draft.location,
                activity_kind=draft.activity_kind or "steps",
                goal_value=draft.goal_value,
                current_value=0,
                start_instant=start,
                end_instant=end,
                lifecycle_state=classify(self._now(), start, end),
                event_type=event_type,
                team_count=draft.team_count,
                members_per_team=draft.members_per_team,
                total_participants=draft.total_participants,
            )
            try:
                remote_id = await self._gateway.create_event(event_to_wire(event))
            except RemoteGatewayError as exc:
                self._metrics.remote_failure("create_event")
                logger.warning(
                    "Remote create failed (%s); keeping event %s on this device", exc, event.id
                )
                self._alert(
                    "Saved on this device",
                    "The server is unavailable. The event is saved locally and will sync "
                    "when the server is back.",
                )
            else:
                event = event.model_copy(update={"id": RemoteId(value=remote_id)})

            self._events = [*self._events, event]
            await self._write_cache()
            self._notify()
            return event

    async def update_event(self, event: Event) -> Event:
        """Apply an edited event.

        Local-only events are reconciled first and stay local if that fails.
        A failed remote update keeps the local edit, flags it
        ``pending_update`` for the next ``reconcile()``, and re-raises.

        Raises:
            EventNotFoundError: If the event is not in the collection
            EventValidationError: If the title is blank or end precedes start
            RemoteGatewayError: If the remote update failed (local edit kept)
        """
        _validate_edit(event)

        async with self._serializer.hold(self._cache_key):
            await self._hydrate_locked()
            current = self._events[self._index_of(event.id)]
            target_id = current.id

            if isinstance(current.id, LocalId):
                report = await self._reconcile_locked()
                synced = report.synced.get(str(current.id))
                if synced is None:
                    updated = self._prepared(event, current.id, pending_update=False)
                    updated = updated.model_copy(
                        update={"pending_progress": current.pending_progress}
                    )
                    self._replace(current.id, updated)
                    await self._write_cache()
                    self._notify()
                    return updated
                target_id = RemoteId(value=synced)
                current = self._events[self._index_of(target_id)]

            updated = self._prepared(event, target_id, pending_update=False)
            updated = updated.model_copy(update={"pending_progress": current.pending_progress})
            try:
                await self._gateway.update_event(target_id.value, event_to_wire(updated))
            except RemoteGatewayError as exc:
                self._metrics.remote_failure("update_event")
                logger.warning("Remote update of event %s failed: %s", target_id, exc)
                self._replace(target_id, updated.model_copy(update={"pending_update": True}))
                await self._write_cache()
                self._notify()
                self._alert(
                    "Not synced",
                    "Your changes are saved on this device and will be sent to the server later.",
                )
                raise

            self._replace(target_id, updated)
            await self._write_cache()
            self._notify()
            return updated

    async def record_progress(self, event_id: EventRef, value: float) -> Event:
        """Set the event's ``current_value`` and send it to the server.

        Raises:
            EventValidationError: If *value* is negative or not a finite number
            EventNotFoundError: If the event is not in the collection
            RemoteGatewayError: If the remote write failed (local value kept)
        """
        if (
            isinstance(value, bool)
            or not isinstance(value, int | float)
            or not math.isfinite(value)
            or value < 0
        ):
            raise EventValidationError(["progress"], "Progress must be a non-negative number")
        ref = self._parse_ref(event_id)

        async with self._serializer.hold(self._cache_key):
            await self._hydrate_locked()
            current = self._events[self._index_of(ref)]
            updated = current.model_copy(update={"current_value": value})

            match current.id:
                case LocalId():
                    updated = updated.model_copy(update={"pending_progress": True})
                case RemoteId(value=remote_id):
                    try:
                        await self._gateway.update_progress(remote_id, value)
                    except RemoteGatewayError as exc:
                        self._metrics.remote_failure("update_progress")
                        logger.warning("Remote progress write for %s failed: %s", remote_id, exc)
                        self._replace(
                            current.id, updated.model_copy(update={"pending_progress": True})
                        )
                        await self._write_cache()
                        self._notify()
                        self._alert(
                            "Not synced",
                            "Your progress is saved on this device and will be sent later.",
                        )
                        raise
                    updated = updated.model_copy(update={"pending_progress": False})

            self._replace(current.id, updated)
            await self._write_cache()
            self._notify()
            return updated

    async def delete_event(self, event_id: EventRef) -> None:
        """Delete an event.

        Local-only events are dropped without a remote call. Server-known
        events are dropped only after the server confirms.

        Raises:
            EventNotFoundError: If the event is not in the collection
            RemoteGatewayError: If the remote delete failed (nothing removed)
        """
        ref = self._parse_ref(event_id)

        async with self._serializer.hold(self._cache_key):
            await self._hydrate_locked()
            current = self._events[self._index_of(ref)]

            match current.id:
                case LocalId():
                    logger.debug("Dropping local-only event %s", current.id)
                case RemoteId(value=remote_id):
                    try:
                        await self._gateway.delete_event(remote_id)
                    except RemoteGatewayError as exc:
                        self._metrics.remote_failure("delete_event")
                        logger.warning("Remote delete of event %s failed: %s", remote_id, exc)
                        raise

            self._events = [event for event in self._events if event.id != current.id]
            await self._write_cache()
            self._notify()

    async def refresh_event(self, event_id: EventRef) -> Event:
        """Re-fetch one server-known event and its roster.

        Local-only events are returned as they are. Events with pending
        local changes keep their local fields and take the fresh roster.

        Raises:
            EventNotFoundError: If the event is not in the collection
            RemoteGatewayError: If the event or its roster could not be
                fetched (nothing changed)
        """
        ref = self._parse_ref(event_id)

        async with self._serializer.hold(self._cache_key):
            await self._hydrate_locked()
            current = self._events[self._index_of(ref)]
            if not isinstance(current.id, RemoteId):
                return current

            try:
                record = await self._gateway.get_event(current.id.value)
                roster = await self._gateway.list_participants(current.id.value)
            except RemoteGatewayError as exc:
                self._metrics.remote_failure(exc.operation)
                raise
            now = self._now()
            fresh = self._materialize(record, roster, now)
            if current.has_pending_changes:
                fresh = self._classified(
                    current.model_copy(update={"participants": fresh.participants}), now
                )

            self._replace(current.id, fresh)
            await self._write_cache()
            self._notify()
            return fresh

    async def reconcile(self) -> ReconcileReport:
        """Post local-only events and push pending changes to the server.

        Failures are left in place for the next call.
        """
        async with self._serializer.hold(self._cache_key):
            await self._hydrate_locked()
            return await self._reconcile_locked()

    async def clear_past_events(self) -> ClearPastReport:
        """Delete every past, server-known event.

        Loads and reconciles first. Events whose remote delete fails stay in
        the collection and are listed in the report.
        """
        async with self._serializer.hold(self._cache_key):
            await self._load_locked()
            await self._reconcile_locked()

            report = ClearPastReport()
            removed: set[RemoteId] = set()
            for event in list(self._events):
                if event.lifecycle_state != LifecycleState.PAST:
                    continue
                if not isinstance(event.id, RemoteId):
                    continue
                try:
                    await self._gateway.delete_event(event.id.value)
                except RemoteGatewayError as exc:
                    self._metrics.remote_failure("delete_event")
                    logger.warning("Could not delete past event %s: %s", event.id, exc)
                    report.failed.append(ClearFailure(event_id=event.id.value, reason=str(exc)))
                    continue
                removed.add(event.id)
                report.deleted.append(event.id.value)

            if removed:
                self._events = [event for event in self._events if event.id not in removed]
                await self._write_cache()
                self._notify()

            logger.info(
                "Cleared %d past event(s), %d failure(s)", len(report.deleted), len(report.failed)
            )
            if report.has_failures:
                self._alert(
                    "Some events were not removed",
                    f"{len(report.failed)} past event(s) could not be deleted. Try again later.",
                )
            return report

    async def shutdown(self) -> None:
        await self._gateway.shutdown()

    # ------------------------------------------------------------------
    # Locked internals (caller holds the writer slot)
    # ------------------------------------------------------------------

    async def _load_locked(self) -> None:
        now = self._now()
        try:
            records = await self._gateway.list_events()
        except RemoteGatewayError as exc:
            self._metrics.remote_failure("list_events")
            self._metrics.cache_fallback()
            logger.warning("Remote load failed (%s); using cached events", exc)
            cached = await self._read_cache()
            self._events = [self._classified(event, now) for event in cached]
            self._seed_local_seq()
            self._hydrated = True
            self._notify()
            return

        rosters = await asyncio.gather(
            *(self._fetch_roster(record.external_id) for record in records)
        )
        fetched = [
            self._materialize(record, roster, now)
            for record, roster in zip(records, rosters, strict=True)
        ]

        previous = self._events if self._events else await self._read_cache()
        pending = {
            event.id: event
            for event in previous
            if isinstance(event.id, RemoteId) and event.has_pending_changes
        }
        merged: list[Event] = []
        for event in fetched:
            local = pending.get(event.id)
            if local is not None:
                event = self._classified(
                    local.model_copy(update={"participants": event.participants}), now
                )
            merged.append(event)
        merged.extend(
            self._classified(event, now) for event in previous if isinstance(event.id, LocalId)
        )

        self._events = merged
        self._seed_local_seq()
        self._hydrated = True
        await self._write_cache()
        self._notify()
        logger.info(
            "Loaded %d event(s) from server (%d kept local-only)",
            len(fetched),
            len(merged) - len(fetched),
        )

    async def _hydrate_locked(self) -> None:
        """Adopt the cached collection before the first mutation of a cold engine."""
        if self._hydrated:
            return
        self._hydrated = True
        if self._events:
            return
        now = self._now()
        self._events = [self._classified(event, now) for event in await self._read_cache()]
        self._seed_local_seq()

    async def _reconcile_locked(self) -> ReconcileReport:
        report = ReconcileReport()
        changed = False

        for original in list(self._events):
            event = original
            match event.id:
                case LocalId():
                    try:
                        remote_id = await self._gateway.create_event(event_to_wire(event))
                    except RemoteGatewayError as exc:
                        self._metrics.remote_failure("create_event")
                        logger.warning("Event %s still local-only: %s", event.id, exc)
                        report.failed.append(str(event.id))
                        continue
                    event = event.model_copy(
                        update={"id": RemoteId(value=remote_id), "pending_update": False}
                    )
                    report.synced[str(original.id)] = remote_id
                    self._replace(original.id, event)
                    changed = True

            if isinstance(event.id, RemoteId) and event.has_pending_changes:
                pushed = await self._push_pending(event, report)
                if pushed != event:
                    self._replace(event.id, pushed)
                    changed = True

        if changed:
            await self._write_cache()
            self._notify()
        self._metrics.reconcile_synced(len(report.synced))
        if report.synced or report.failed or report.pushed or report.push_failed:
            logger.info(
                "Reconciled events: %d synced, %d still local, %d pushed, %d push failures",
                len(report.synced),
                len(report.failed),
                len(report.pushed),
                len(report.push_failed),
            )
        return report

    async def _push_pending(self, event: Event, report: ReconcileReport) -> Event:
        if not isinstance(event.id, RemoteId):
            raise TypeError(f"Pending changes can only be pushed for server events, got {event.id}")
        remote_id = event.id.value
        cleared: dict[str, bool] = {}
        failed = False

        if event.pending_update:
            try:
                await self._gateway.update_event(remote_id, event_to_wire(event))
                cleared["pending_update"] = False
            except RemoteGatewayError as exc:
                self._metrics.remote_failure("update_event")
                logger.warning("Pending update for %s not pushed: %s", remote_id, exc)
                failed = True

        if event.pending_progress:
            try:
                await self._gateway.update_progress(remote_id, event.current_value)
                cleared["pending_progress"] = False
            except RemoteGatewayError as exc:
                self._metrics.remote_failure("update_progress")
                logger.warning("Pending progress for %s not pushed: %s", remote_id, exc)
                failed = True

        if failed:
            report.push_failed.append(remote_id)
        else:
            report.pushed.append(remote_id)
        return event.model_copy(update=cleared) if cleared else event

    async def _fetch_roster(self, event_id: str) -> Roster:
        try:
            return await self._gateway.list_participants(event_id)
        except RemoteGatewayError as exc:
            self._metrics.remote_failure("list_participants")
            logger.warning("Participants for event %s unavailable: %s", event_id, exc)
            return EMPTY_ROSTER.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def _read_cache(self) -> list[Event]:
        try:
            blob = await self._cache.get(self._cache_key)
        except CacheError as exc:
            logger.warning("Local cache read failed: %s", exc)
            return []
        if blob is None:
            return []
        try:
            return deserialize_events(blob)
        except ValueError as exc:
            logger.warning("Discarding unreadable cached events: %s", exc)
            return []

    async def _write_cache(self) -> None:
        try:
            await self._cache.set(self._cache_key, serialize_events(self._events))
        except CacheError as exc:
            logger.warning("Local cache write failed: %s", exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return parse_instant(self._clock())

    @staticmethod
    def _classified(event: Event, now: datetime) -> Event:
        state = classify(now, event.start_instant, event.end_instant)
        if state == event.lifecycle_state:
            return event
        return event.model_copy(update={"lifecycle_state": state})

    @staticmethod
    def _materialize(record: RemoteEventRecord, roster: Roster, now: datetime) -> Event:
        start = normalize_instant(record.start_raw, field="start_date")
        end = normalize_instant(record.end_raw, field="end_date")
        is_team = record.event_type == EventType.TEAM or roster.is_team_event
        return Event(
            id=RemoteId(value=record.external_id),
            title=record.title,
            description=record.description,
            location=record.location,
            activity_kind=record.activity,
            goal_value=record.goal,
            current_value=(
                record.current_value
                if record.current_value is not None
                else roster_progress(roster)
            ),
            start_instant=start,
            end_instant=end,
            lifecycle_state=classify(now, start, end),
            event_type=EventType.TEAM if is_team else EventType.INDIVIDUAL,
            team_count=record.team_count,
            members_per_team=record.members_per_team,
            total_participants=record.total_participants,
            participants=(
                reconcile_team_progress(roster.participants) if is_team else roster.participants
            ),
        )

    def _prepared(
        self, event: Event, event_id: LocalId | RemoteId, *, pending_update: bool
    ) -> Event:
        data = event.model_dump(exclude={"id", "is_local_only"})
        data.update(id=event_id, pending_update=pending_update)
        prepared = Event.model_validate(data)
        return self._classified(prepared, self._now())

    @staticmethod
    def _parse_ref(event_id: EventRef) -> LocalId | RemoteId:
        try:
            return parse_event_id(event_id)
        except ValueError as exc:
            raise EventNotFoundError(event_id) from exc

    def _index_of(self, event_id: LocalId | RemoteId) -> int:
        for index, event in enumerate(self._events):
            if event.id == event_id:
                return index
        raise EventNotFoundError(str(event_id))

    def _replace(self, event_id: LocalId | RemoteId, event: Event) -> None:
        index = self._index_of(event_id)
        self._events = [*self._events[:index], event, *self._events[index + 1 :]]

    def _seed_local_seq(self) -> None:
        for event in self._events:
            if isinstance(event.id, LocalId) and event.id.seq >= self._next_local_seq:
                self._next_local_seq = event.id.seq + 1

    def _allocate_local_id(self) -> LocalId:
        self._seed_local_seq()
        local_id = LocalId(seq=self._next_local_seq)
        self._next_local_seq += 1
        return local_id

    def _notify(self) -> None:
        snapshot = self.events
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Event listener raised; continuing")

    def _alert(self, title: str, message: str) -> None:
        try:
            self._alerts.notify(title, message)
        except Exception:
            logger.exception("Alert sink raised while delivering %r", title)


def _validate_draft(draft: EventDraft) -> tuple[EventType, datetime, datetime]:
    missing: list[str] = []
    if not draft.title or not draft.title.strip():
        missing.append("title")
    if _is_blank(draft.start):
        missing.append("start")
    if _is_blank(draft.end):
        missing.append("end")
    raw_type = (draft.event_type or "").strip()
    if not raw_type:
        missing.append("event_type")
    if missing:
        raise EventValidationError(missing)

    try:
        event_type = EventType(raw_type.lower())
    except ValueError as exc:
        raise EventValidationError(
            ["event_type"], f"Unknown event type: {draft.event_type!r}"
        ) from exc

    invalid: list[str] = []
    instants: dict[str, datetime] = {}
    for name, raw in (("start", draft.start), ("end", draft.end)):
        try:
            instants[name] = parse_instant(raw)
        except TemporalParseError:
            invalid.append(name)
    if invalid:
        raise EventValidationError(invalid, f"Unparseable date(s): {', '.join(invalid)}")

    if instants["end"] < instants["start"]:
        raise EventValidationError(["end"], "End must not be before start")
    return event_type, instants["start"], instants["end"]


def _validate_edit(event: Event) -> None:
    if not event.title.strip():
        raise EventValidationError(["title"])
    if event.end_instant < event.start_instant:
        raise EventValidationError(["end"], "End must not be before start")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
