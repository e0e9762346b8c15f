"""Event data model, tagged identifiers, and cache serialization."""

from __future__ import annotations

import enum
import json
import logging
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    computed_field,
    field_validator,
    model_validator,
)

from eventsync.core.lifecycle import LifecycleState
from eventsync.core.temporal import normalize_instant

logger = logging.getLogger(__name__)

_LOCAL_PREFIX = "local:"


class EventType(enum.StrEnum):
    """Event-type discriminator as used by the backend."""

    INDIVIDUAL = "individual"
    TEAM = "team"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class LocalId(BaseModel):
    """Temporary id for an event the server has not accepted yet."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["local"] = "local"
    seq: int = Field(ge=1)

    def __str__(self) -> str:
        return f"{_LOCAL_PREFIX}{self.seq}"


class RemoteId(BaseModel):
    """Server-assigned id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["remote"] = "remote"
    value: str = Field(min_length=1)

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("value must be a string or integer id")
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    def __str__(self) -> str:
        return self.value


EventId = Annotated[LocalId | RemoteId, Field(discriminator="kind")]


def parse_event_id(raw: LocalId | RemoteId | str | int) -> LocalId | RemoteId:
    """Parse ``local:<n>`` into a :class:`LocalId`; anything else is a :class:`RemoteId`.

    Raises:
        ValueError: If *raw* is empty or a malformed local id
    """
    if isinstance(raw, LocalId | RemoteId):
        return raw
    text = str(raw).strip()
    if not text:
        raise ValueError("Event id must be non-empty")
    if text.startswith(_LOCAL_PREFIX):
        seq = text[len(_LOCAL_PREFIX) :]
        if not seq.isdigit():
            raise ValueError(f"Invalid local event id: {text!r}")
        return LocalId(seq=int(seq))
    return RemoteId(value=text)


# ---------------------------------------------------------------------------
# Participants and events
# ---------------------------------------------------------------------------


class Participant(BaseModel):
    """One roster entry of an event."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    name: str = ""
    team_id: str | None = None
    individual_progress: float = 0
    team_progress: float = 0


class Roster(BaseModel):
    """Participant listing for one event as reported by the server."""

    model_config = ConfigDict(extra="forbid")

    is_team_event: bool = False
    participants: list[Participant] = Field(default_factory=list)


EMPTY_ROSTER = Roster()


class Event(BaseModel):
    """A team or solo challenge.

    ``start_instant``/``end_instant`` are always UTC-aware datetimes.
    ``lifecycle_state`` is derived by the engine on every load and mutation
    and is never written to the cache. ``is_local_only`` follows from the id
    type, so an event cannot claim to be server-known while holding a
    temporary id (or the reverse).
    """

    model_config = ConfigDict(extra="ignore")

    id: EventId
    title: str
    description: str = ""
    location: str = ""
    activity_kind: str = "steps"
    goal_value: float = 0
    current_value: float = 0
    start_instant: datetime
    end_instant: datetime
    lifecycle_state: LifecycleState = LifecycleState.UPCOMING
    event_type: EventType = EventType.INDIVIDUAL
    team_count: int = 0
    members_per_team: int = 0
    total_participants: int = 0
    participants: list[Participant] = Field(default_factory=list)
    pending_update: bool = False
    pending_progress: bool = False

    @field_validator("start_instant", "end_instant", mode="before")
    @classmethod
    def _normalize_instants(cls, value: Any, info: ValidationInfo) -> datetime:
        return normalize_instant(value, field=info.field_name)

    @model_validator(mode="after")
    def _drop_unused_sizing(self) -> Event:
        if self.event_type == EventType.TEAM:
            self.total_participants = 0
        else:
            self.team_count = 0
            self.members_per_team = 0
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_local_only(self) -> bool:
        return isinstance(self.id, LocalId)

    @property
    def is_team_event(self) -> bool:
        return self.event_type == EventType.TEAM

    @property
    def has_pending_changes(self) -> bool:
        return self.pending_update or self.pending_progress


class EventDraft(BaseModel):
    """User input for a new event; validated by the engine, not here."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    title: str | None = None
    description: str = ""
    location: str = ""
    activity_kind: str = Field(
        default="steps", validation_alias=AliasChoices("activity_kind", "activityKind", "activity")
    )
    goal_value: float = Field(
        default=0, validation_alias=AliasChoices("goal_value", "goalValue", "goal")
    )
    start: Any = Field(
        default=None,
        validation_alias=AliasChoices("start", "start_instant", "startInstant", "start_date"),
    )
    end: Any = Field(
        default=None,
        validation_alias=AliasChoices("end", "end_instant", "endInstant", "end_date"),
    )
    event_type: str | None = Field(
        default=None, validation_alias=AliasChoices("event_type", "eventType")
    )
    team_count: int = Field(default=0, validation_alias=AliasChoices("team_count", "teamCount"))
    members_per_team: int = Field(
        default=0, validation_alias=AliasChoices("members_per_team", "membersPerTeam")
    )
    total_participants: int = Field(
        default=0, validation_alias=AliasChoices("total_participants", "totalParticipants")
    )


class RemoteEventRecord(BaseModel):
    """Event row as returned by the server, dates still in wire form."""

    model_config = ConfigDict(extra="forbid")

    external_id: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    location: str = ""
    activity: str = "steps"
    goal: float = 0
    current_value: float | None = None
    start_raw: Any = None
    end_raw: Any = None
    event_type: EventType = EventType.INDIVIDUAL
    total_participants: int = 0
    team_count: int = 0
    members_per_team: int = 0


# ---------------------------------------------------------------------------
# Operation reports
# ---------------------------------------------------------------------------


class ReconcileReport(BaseModel):
    """Outcome of one reconciliation pass."""

    model_config = ConfigDict(extra="forbid")

    synced: dict[str, str] = Field(default_factory=dict)
    failed: list[str] = Field(default_factory=list)
    pushed: list[str] = Field(default_factory=list)
    push_failed: list[str] = Field(default_factory=list)


class ClearFailure(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_id: str
    reason: str


class ClearPastReport(BaseModel):
    """Per-event outcome of ``clear_past_events``; partial success is normal."""

    model_config = ConfigDict(extra="forbid")

    deleted: list[str] = Field(default_factory=list)
    failed: list[ClearFailure] = Field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)


# ---------------------------------------------------------------------------
# Cache serialization
# ---------------------------------------------------------------------------


def serialize_events(events: list[Event]) -> str:
    """Encode the collection as the JSON array kept under the cache key."""
    payload = [event.model_dump(mode="json", exclude={"lifecycle_state"}) for event in events]
    return json.dumps(payload, separators=(",", ":"))


def deserialize_events(blob: str) -> list[Event]:
    """Decode a cached collection, skipping entries that no longer validate.

    Raises:
        ValueError: If *blob* is not a JSON array
    """
    raw = json.loads(blob)
    if not isinstance(raw, list):
        raise ValueError("Cached event collection must be a JSON array")

    events: list[Event] = []
    for index, item in enumerate(raw):
        try:
            events.append(Event.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                "Skipping cached event at index %d: %s", index, exc.errors()[0].get("msg")
            )
    return events
