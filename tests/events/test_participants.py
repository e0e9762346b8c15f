"""Tests for roster parsing and team progress."""

from __future__ import annotations

import pytest

from eventsync.events.models import Participant, Roster
from eventsync.events.participants import (
    coerce_id,
    coerce_number,
    parse_roster,
    reconcile_team_progress,
    roster_progress,
    team_standings,
)

pytestmark = pytest.mark.unit


class TestParseRoster:
    def test_team_roster(self):
        roster = parse_roster(
            {
                "success": True,
                "isTeamEvent": True,
                "participants": [
                    {"user_id": 1, "name": "Ada", "team_id": 10, "individual_progress": 100},
                    {"user_id": 2, "name": "Bo", "team_id": 10, "individual_progress": 200},
                    {"user_id": 3, "name": "Cy", "team_id": 11, "individual_progress": 50},
                ],
            }
        )

        assert roster.is_team_event
        assert [p.user_id for p in roster.participants] == ["1", "2", "3"]
        assert [p.team_progress for p in roster.participants] == [150, 150, 50]

    def test_individual_roster_accepts_progress_alias(self):
        roster = parse_roster(
            {"participants": [{"userId": "u1", "progress": "12.5"}, {"name": "no id"}, "junk"]}
        )

        assert not roster.is_team_event
        assert len(roster.participants) == 1
        assert roster.participants[0].individual_progress == 12.5

    def test_missing_participants_is_empty(self):
        assert parse_roster({"success": True}) == Roster()


class TestTeamProgress:
    def test_reported_team_progress_wins(self):
        participants = [
            Participant(user_id="1", team_id="A", individual_progress=10, team_progress=500),
            Participant(user_id="2", team_id="A", individual_progress=20),
        ]

        reconciled = reconcile_team_progress(participants)

        assert [p.team_progress for p in reconciled] == [500, 500]

    def test_unteamed_participants_unchanged(self):
        solo = Participant(user_id="1", individual_progress=10)
        assert reconcile_team_progress([solo]) == [solo]

    def test_standings_best_first(self):
        participants = [
            Participant(user_id="1", team_id="A", individual_progress=10),
            Participant(user_id="2", team_id="B", individual_progress=30),
        ]
        assert team_standings(participants) == [("B", 30), ("A", 10)]

    def test_roster_progress_team_uses_leader(self):
        roster = Roster(
            is_team_event=True,
            participants=[
                Participant(user_id="1", team_id="A", individual_progress=10),
                Participant(user_id="2", team_id="B", individual_progress=30),
            ],
        )
        assert roster_progress(roster) == 30

    def test_roster_progress_individual_sums(self):
        roster = Roster(
            participants=[
                Participant(user_id="1", individual_progress=10),
                Participant(user_id="2", individual_progress=30),
            ]
        )
        assert roster_progress(roster) == 40

    def test_empty_team_roster_has_no_progress(self):
        assert roster_progress(Roster(is_team_event=True)) == 0


class TestCoercion:
    @pytest.mark.parametrize(
        ("raw", "expected"), [(5, "5"), (" x ", "x"), ("", None), (None, None), (True, None)]
    )
    def test_coerce_id(self, raw, expected):
        assert coerce_id(raw) == expected

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (5, 5),
            ("2.5", 2.5),
            ("abc", 0),
            (None, 0),
            (False, 0),
            ("NaN", 0),
            ("1e999", 0),
            (float("inf"), 0),
            (float("nan"), 0),
        ],
    )
    def test_coerce_number(self, raw, expected):
        assert coerce_number(raw) == expected
