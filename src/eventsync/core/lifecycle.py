"""Lifecycle classification for time-boxed events."""

from __future__ import annotations

import enum
from datetime import datetime

from eventsync.core.temporal import parse_instant


class LifecycleState(enum.StrEnum):
    """Where an event sits relative to the current instant."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    PAST = "past"


def classify(now: datetime, start: datetime, end: datetime) -> LifecycleState:
    """Classify the ``[start, end]`` interval against *now*.

    Naive datetimes are read as UTC so comparisons never mix offsets. Both
    interval bounds are inclusive: an event is active at its exact start and
    end instants.
    """
    now, start, end = parse_instant(now), parse_instant(start), parse_instant(end)
    if start > now:
        return LifecycleState.UPCOMING
    if end < now:
        return LifecycleState.PAST
    return LifecycleState.ACTIVE
