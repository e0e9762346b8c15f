"""Participant roster parsing and team progress reconciliation."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Any

from eventsync.events.models import EMPTY_ROSTER, Participant, Roster

logger = logging.getLogger(__name__)


def coerce_id(value: Any) -> str | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        normalized = value.strip()
        return normalized or None
    return None


def coerce_number(value: Any) -> float:
    """Read a server number, falling back to 0 for anything unusable or non-finite."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    return 0


def parse_roster(payload: dict[str, Any]) -> Roster:
    """Build a :class:`Roster` from a ``/events/{id}/participants`` response.

    Entries without a usable ``user_id`` are skipped.
    """
    raw_participants = payload.get("participants")
    if not isinstance(raw_participants, list):
        return EMPTY_ROSTER.model_copy(deep=True)

    participants: list[Participant] = []
    for item in raw_participants:
        if not isinstance(item, dict):
            continue
        user_id = coerce_id(item.get("user_id", item.get("userId")))
        if user_id is None:
            logger.warning("Skipping participant without user_id")
            continue
        name = item.get("name")
        participants.append(
            Participant(
                user_id=user_id,
                name=name.strip() if isinstance(name, str) else "",
                team_id=coerce_id(item.get("team_id", item.get("teamId"))),
                individual_progress=coerce_number(
                    item.get("individual_progress", item.get("progress"))
                ),
                team_progress=coerce_number(item.get("team_progress")),
            )
        )

    is_team_event = bool(payload.get("isTeamEvent", payload.get("is_team_event", False)))
    roster = Roster(is_team_event=is_team_event, participants=participants)
    if is_team_event:
        roster.participants = reconcile_team_progress(roster.participants)
    return roster


def reconcile_team_progress(participants: list[Participant]) -> list[Participant]:
    """Give every member of a team the same ``team_progress``.

    When any member reports a team figure the highest reported one wins;
    otherwise the team figure is the rounded mean of the members' individual
    progress, which is how the server derives it. Participants without a team
    are returned unchanged.
    """
    members: dict[str, list[Participant]] = defaultdict(list)
    for participant in participants:
        if participant.team_id is not None:
            members[participant.team_id].append(participant)

    team_totals: dict[str, float] = {}
    for team_id, team in members.items():
        reported = [p.team_progress for p in team if p.team_progress > 0]
        if reported:
            team_totals[team_id] = max(reported)
        else:
            team_totals[team_id] = round(sum(p.individual_progress for p in team) / len(team))

    return [
        participant.model_copy(update={"team_progress": team_totals[participant.team_id]})
        if participant.team_id is not None
        else participant
        for participant in participants
    ]


def team_standings(participants: list[Participant]) -> list[tuple[str, float]]:
    """Return ``(team_id, team_progress)`` pairs, best team first."""
    totals: dict[str, float] = {}
    for participant in reconcile_team_progress(participants):
        if participant.team_id is not None:
            totals[participant.team_id] = participant.team_progress
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def roster_progress(roster: Roster) -> float:
    """Event-level progress implied by a roster.

    Team events count their leading team; individual events add up everyone's
    individual progress.
    """
    if roster.is_team_event:
        standings = team_standings(roster.participants)
        return standings[0][1] if standings else 0
    return sum(p.individual_progress for p in roster.participants)
